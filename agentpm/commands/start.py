"""
agentpm start-epic / start-phase / start-task / start-next
"""

from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output
from agentpm.workflow.engine import EpicEngine


def cmd_start_epic(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.start_epic(at=args.time))
    return EXIT_OK


def cmd_start_phase(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.start_phase(args.id, at=args.time))
    return EXIT_OK


def cmd_start_task(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.start_task(args.id, at=args.time))
    return EXIT_OK


def cmd_start_next(args, engine: EpicEngine, out: Output) -> int:
    """Start the next phase or task, whichever is due."""
    out.mutation(engine.start_next(at=args.time))
    return EXIT_OK
