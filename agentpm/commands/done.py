"""
agentpm done-epic / done-phase / done-task

Completion is refused while anything underneath is unfinished; the error
lists every blocker.
"""

from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output
from agentpm.workflow.engine import EpicEngine


def cmd_done_epic(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.done_epic(at=args.time))
    return EXIT_OK


def cmd_done_phase(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.done_phase(args.id, at=args.time))
    return EXIT_OK


def cmd_done_task(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.done_task(args.id, at=args.time))
    return EXIT_OK
