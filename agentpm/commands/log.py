"""
agentpm log - Append a note to the event journal.
"""

from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output
from agentpm.workflow.engine import EpicEngine


def cmd_log(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.log_note(" ".join(args.message), at=args.time))
    return EXIT_OK
