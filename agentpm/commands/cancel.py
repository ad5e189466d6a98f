"""
agentpm cancel-task / cancel-test - Cancel with a required reason.
"""

from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output
from agentpm.workflow.engine import EpicEngine


def cmd_cancel_task(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.cancel_task(args.id, args.reason or "", at=args.time))
    return EXIT_OK


def cmd_cancel_test(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.cancel_test(args.id, args.reason or "", at=args.time))
    return EXIT_OK
