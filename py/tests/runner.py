# Test runner that uses the declarative test cases in mapper.json.

import os
import json
import re
import copy
from typing import Any, Dict, Callable, TypedDict

from struct_mapper import ABSENT


NULLMARK = '__NULL__'  # Value is JSON null
UNDEFMARK = '__UNDEF__'  # Value is not present (thus, ABSENT)


class RunPack(TypedDict):
    spec: Dict[str, Any]
    runset: Callable
    runsetflags: Callable
    subject: Callable


def makeRunner(testfile: str, utility: Any):

    def runner(name: str) -> RunPack:
        spec = resolve_spec(name, testfile)
        subject = resolve_subject(name, utility)

        def runsetflags(testspec, flags, testsubject):
            nonlocal subject

            subject = testsubject or subject
            flags = resolve_flags(flags)

            for entry in testspec['set']:
                try:
                    entry = resolve_entry(entry, flags)
                    args = resolve_args(entry)

                    res = subject(*args)
                    res = fixJSON(res, flags)
                    entry['res'] = res
                    check_result(entry, res)

                except Exception as err:
                    handle_error(entry, err, utility)

        def runset(testspec, testsubject):
            return runsetflags(testspec, {}, testsubject)

        runpack = {
            "spec": spec,
            "runset": runset,
            "runsetflags": runsetflags,
            "subject": subject,
        }

        return runpack

    return runner


def resolve_spec(name: str, testfile: str) -> Dict[str, Any]:
    with open(os.path.join(os.path.dirname(__file__), testfile), 'r', encoding='utf-8') as f:
        alltests = json.load(f)

    if name in alltests:
        spec = alltests[name]
    else:
        spec = alltests

    return spec


def resolve_subject(name: str, container: Any):
    return getattr(container, name, None)


def check_result(entry, res):
    out = entry.get('out')

    if out == res:
        return

    raise AssertionError(
        f"Expected: {out}, got: {res}\n"
        f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
    )


def handle_error(entry, err, utility):
    # Record the error in the entry
    entry['thrown'] = err
    entry_err = entry.get('err')

    # If the test expects an error
    if entry_err is not None:
        # If it's any error or matches expected pattern
        if entry_err is True or matchval(entry_err, str(err), utility):
            return True

        # Expected error didn't match the actual error
        raise AssertionError(
            f"ERROR MATCH: [{utility.stringify(entry_err)}] <=> [{str(err)}]"
        )
    # If the test doesn't expect an error
    elif isinstance(err, AssertionError):
        # Propagate assertion errors with added context
        raise AssertionError(
            f"{str(err)}\n\nENTRY: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )
    else:
        # For other errors, include the full error stack
        import traceback
        raise AssertionError(
            f"{traceback.format_exc()}\nENTRY: " +
            f"{json.dumps(entry, indent=2, default=jsonfallback)}"
        )


def resolve_args(entry):
    args = []

    if 'args' in entry:
        args = copy.deepcopy(entry['args'])
    elif 'in' in entry:
        args = [copy.deepcopy(entry['in'])]

    return args


def resolve_flags(flags: Dict[str, Any] = None) -> Dict[str, bool]:
    if flags is None:
        flags = {}

    flags["null"] = flags.get("null", True)

    return flags


def resolve_entry(entry: Dict[str, Any], flags: Dict[str, bool]) -> Dict[str, Any]:
    # Expected output uses the same markers as the fixed result.
    if 'out' in entry:
        entry['out'] = fixJSON(entry['out'], flags)
    elif flags.get("null", True):
        entry['out'] = NULLMARK

    return entry


def fixJSON(obj, flags):
    # Handle absent values
    if obj is ABSENT:
        return UNDEFMARK

    # Handle nulls
    if obj is None:
        return NULLMARK if flags.get("null", True) else None

    # Handle errors
    if isinstance(obj, Exception):
        return {
            'name': type(obj).__name__,
            'message': str(obj)
        }

    # Handle collections recursively
    elif isinstance(obj, list):
        return [fixJSON(item, flags) for item in obj]
    elif isinstance(obj, dict):
        return {k: fixJSON(v, flags) for k, v in obj.items()}

    # Return everything else unchanged
    return obj


def jsonfallback(obj):
    return f"<non-serializable: {type(obj).__name__}>"


def matchval(check, base, utility):
    if check == base:
        return True

    # String-based pattern matching
    if isinstance(check, str):
        base_str = utility.stringify(base)

        # Check for regex pattern with /pattern/ syntax
        regex_match = re.match(r'^/(.+)/$', check)

        if regex_match:
            pattern = regex_match.group(1)
            return re.search(pattern, base_str) is not None
        else:
            # Case-insensitive substring check
            return utility.stringify(check).lower() in base_str.lower()

    # No match
    return False


__all__ = [
    'NULLMARK',
    'UNDEFMARK',
    'makeRunner',
]
