#!/usr/bin/env python3
"""agentpm CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from agentpm.epic.errors import EpicError
from agentpm.lib.clock import parse_timestamp
from agentpm.lib.config import (
    config_exists,
    default_config_path,
    load_project_config,
    resolve_epic_path,
)
from agentpm.lib.constants import (
    DEFAULT_ASSIGNEE,
    DEFAULT_EVENT_LIMIT,
    EXIT_BLOCKED,
    EXIT_ERROR,
    HANDOFF_EVENT_LIMIT,
    OUTPUT_FORMATS,
)
from agentpm.lib.output import Output
from agentpm.workflow.engine import EpicEngine
from agentpm.commands import init as cmd_init_module
from agentpm.commands import switch as cmd_switch_module
from agentpm.commands import status as cmd_status_module
from agentpm.commands import pending as cmd_pending_module
from agentpm.commands import events as cmd_events_module
from agentpm.commands import show as cmd_show_module
from agentpm.commands import handoff as cmd_handoff_module
from agentpm.commands import validate as cmd_validate_module
from agentpm.commands import log as cmd_log_module
from agentpm.commands import start as cmd_start_module
from agentpm.commands import done as cmd_done_module
from agentpm.commands import cancel as cmd_cancel_module
from agentpm.commands import results as cmd_results_module
from agentpm.commands import query as cmd_query_module
from agentpm.commands import config as cmd_config_module


def _timestamp(value: str):
    """argparse type for --time."""
    try:
        return parse_timestamp(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid time '{value}' (use ISO 8601, e.g. 2025-08-16T15:30:00Z)"
        ) from None


def get_config_path(args) -> Path:
    return Path(args.config) if args.config else default_config_path()


def get_epic_path(args) -> Path:
    """Epic document from --file, else from the project config."""
    return resolve_epic_path(args.file, get_config_path(args))


def get_engine(args) -> EpicEngine:
    config_path = get_config_path(args)
    assignee = DEFAULT_ASSIGNEE
    if config_exists(config_path):
        assignee = load_project_config(config_path).default_assignee
    return EpicEngine(get_epic_path(args), default_assignee=assignee)


def get_output(args) -> Output:
    return Output(args.format)


# Project

def cmd_init(args):
    return cmd_init_module.cmd_init(args, get_config_path(args), get_output(args))


def cmd_switch(args):
    return cmd_switch_module.cmd_switch(args, get_config_path(args), get_output(args))


def cmd_config(args):
    return cmd_config_module.cmd_config(args, get_config_path(args), get_output(args))


# Queries

def cmd_status(args):
    return cmd_status_module.cmd_status(args, get_epic_path(args), get_output(args))


def cmd_current(args):
    return cmd_status_module.cmd_current(args, get_epic_path(args), get_output(args))


def cmd_pending(args):
    return cmd_pending_module.cmd_pending(args, get_epic_path(args), get_output(args))


def cmd_failing(args):
    return cmd_pending_module.cmd_failing(args, get_epic_path(args), get_output(args))


def cmd_events(args):
    return cmd_events_module.cmd_events(args, get_epic_path(args), get_output(args))


def cmd_show(args):
    return cmd_show_module.cmd_show(args, get_epic_path(args), get_output(args))


def cmd_handoff(args):
    return cmd_handoff_module.cmd_handoff(args, get_epic_path(args), get_output(args))


def cmd_validate(args):
    return cmd_validate_module.cmd_validate(args, get_epic_path(args), get_output(args))


def cmd_query(args):
    return cmd_query_module.cmd_query(args, get_epic_path(args), get_output(args))


# Mutations

def cmd_log(args):
    return cmd_log_module.cmd_log(args, get_engine(args), get_output(args))


def cmd_start_epic(args):
    return cmd_start_module.cmd_start_epic(args, get_engine(args), get_output(args))


def cmd_done_epic(args):
    return cmd_done_module.cmd_done_epic(args, get_engine(args), get_output(args))


def cmd_start_phase(args):
    return cmd_start_module.cmd_start_phase(args, get_engine(args), get_output(args))


def cmd_done_phase(args):
    return cmd_done_module.cmd_done_phase(args, get_engine(args), get_output(args))


def cmd_start_task(args):
    return cmd_start_module.cmd_start_task(args, get_engine(args), get_output(args))


def cmd_done_task(args):
    return cmd_done_module.cmd_done_task(args, get_engine(args), get_output(args))


def cmd_cancel_task(args):
    return cmd_cancel_module.cmd_cancel_task(args, get_engine(args), get_output(args))


def cmd_start_test(args):
    return cmd_results_module.cmd_start_test(args, get_engine(args), get_output(args))


def cmd_pass(args):
    return cmd_results_module.cmd_pass(args, get_engine(args), get_output(args))


def cmd_fail(args):
    return cmd_results_module.cmd_fail(args, get_engine(args), get_output(args))


def cmd_cancel_test(args):
    return cmd_cancel_module.cmd_cancel_test(args, get_engine(args), get_output(args))


def cmd_start_next(args):
    return cmd_start_module.cmd_start_next(args, get_engine(args), get_output(args))


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--file', '-f', help='Epic file (overrides the current epic)')
    common.add_argument('--config', '-c', help='Config file (default: ./.agentpm.env)')
    common.add_argument('--time', '-t', type=_timestamp, help='Timestamp to record (ISO 8601)')
    common.add_argument('--format', '-F', choices=OUTPUT_FORMATS, default='text', help='Output format')
    common.add_argument('--verbose', '-v', action='store_true', help='Debug logging on stderr')
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(prog='agentpm', description='Epic tracking for agent collaborators')
    subparsers = parser.add_subparsers(dest='command', required=True)

    def add(name, func, help_text):
        p = subparsers.add_parser(name, parents=[common], help=help_text)
        p.set_defaults(func=func)
        return p

    # agentpm init
    p_init = add('init', cmd_init, 'Set the current epic for this project')
    p_init.add_argument('--epic', '-e', required=True, help='Epic file')
    p_init.add_argument('--create', action='store_true', help='Create the epic file if missing')
    p_init.add_argument('--id', help='Epic id (with --create)')
    p_init.add_argument('--name', help='Epic name (with --create)')
    p_init.add_argument('--project-name', help='Project name')
    p_init.add_argument('--assignee', help='Default assignee for started tasks')

    # agentpm switch
    p_switch = add('switch', cmd_switch, 'Switch the current epic')
    p_switch.add_argument('epic', nargs='?', help='Epic file to make current')
    p_switch.add_argument('--back', '-b', action='store_true', help='Switch back to the previous epic')

    # agentpm config
    add('config', cmd_config, 'Show the project configuration')

    # Queries
    add('status', cmd_status, 'Show epic status and progress')
    add('current', cmd_current, 'Show the active phase, task and next action')
    add('pending', cmd_pending, 'List pending tasks by phase')
    add('failing', cmd_failing, 'List failing tests')

    p_events = add('events', cmd_events, 'Show recent events')
    p_events.add_argument('--limit', '-n', type=int, default=DEFAULT_EVENT_LIMIT, help='Number of events')
    p_events.add_argument('--newest-first', action='store_true', help='Newest event first')

    p_show = add('show', cmd_show, 'Show a phase, task or test in context')
    p_show.add_argument('id', help='Phase, task or test id')
    p_show.add_argument('--kind', '-k', choices=('phase', 'task', 'test'), help='Entity kind')

    p_handoff = add('handoff', cmd_handoff, 'Summary for whoever picks up the epic')
    p_handoff.add_argument('--limit', '-n', type=int, default=HANDOFF_EVENT_LIMIT, help='Number of events')
    p_handoff.add_argument('--check-completion', action='store_true', help='Report what blocks done-epic')

    add('validate', cmd_validate, 'Validate the epic document structure')

    p_query = add('query', cmd_query, 'Run a path query over the epic document')
    p_query.add_argument('expression', help="Path expression, e.g. //task[@status='done']")

    p_log = add('log', cmd_log, 'Add a note to the event journal')
    p_log.add_argument('message', nargs='+', help='Note text')

    # Epic
    add('start-epic', cmd_start_epic, 'Start the epic')
    add('done-epic', cmd_done_epic, 'Complete the epic')

    # Phases
    p_start_phase = add('start-phase', cmd_start_phase, 'Start a phase')
    p_start_phase.add_argument('id', help='Phase id')
    p_done_phase = add('done-phase', cmd_done_phase, 'Complete a phase')
    p_done_phase.add_argument('id', help='Phase id')

    # Tasks
    p_start_task = add('start-task', cmd_start_task, 'Start a task')
    p_start_task.add_argument('id', help='Task id')
    p_done_task = add('done-task', cmd_done_task, 'Complete a task')
    p_done_task.add_argument('id', help='Task id')
    p_cancel_task = add('cancel-task', cmd_cancel_task, 'Cancel a task')
    p_cancel_task.add_argument('id', help='Task id')
    p_cancel_task.add_argument('--reason', '-r', help='Why the task is cancelled (required)')

    # Tests
    p_start_test = add('start-test', cmd_start_test, 'Start a test')
    p_start_test.add_argument('id', help='Test id')
    p_pass = add('pass', cmd_pass, 'Mark tests passing')
    p_pass.add_argument('ids', nargs='+', help='Test id(s)')
    p_fail = add('fail', cmd_fail, 'Mark tests failing')
    p_fail.add_argument('ids', nargs='+', help='Test id(s)')
    p_fail.add_argument('--note', help='Failure note')
    p_cancel_test = add('cancel-test', cmd_cancel_test, 'Cancel a test')
    p_cancel_test.add_argument('id', help='Test id')
    p_cancel_test.add_argument('--reason', '-r', help='Why the test is cancelled (required)')

    add('start-next', cmd_start_next, 'Start the next phase or task automatically')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )

    try:
        return args.func(args)
    except EpicError as e:
        get_output(args).error(e)
        return EXIT_BLOCKED if e.is_refusal else EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
