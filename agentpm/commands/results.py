"""
agentpm start-test / pass / fail - Record test work and results.

pass and fail take one or more test ids. With several ids the whole set
is checked first and nothing changes unless every test may move.
"""

from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output
from agentpm.workflow.engine import EpicEngine


def cmd_start_test(args, engine: EpicEngine, out: Output) -> int:
    out.mutation(engine.start_test(args.id, at=args.time))
    return EXIT_OK


def cmd_pass(args, engine: EpicEngine, out: Output) -> int:
    if len(args.ids) == 1:
        result = engine.pass_test(args.ids[0], at=args.time)
    else:
        result = engine.batch("pass", args.ids, at=args.time)
    out.mutation(result)
    return EXIT_OK


def cmd_fail(args, engine: EpicEngine, out: Output) -> int:
    if len(args.ids) == 1:
        result = engine.fail_test(args.ids[0], args.note or "", at=args.time)
    else:
        result = engine.batch("fail", args.ids, note=args.note or "", at=args.time)
    out.mutation(result)
    return EXIT_OK
