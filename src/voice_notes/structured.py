"""Recover JSON objects from language-model output.

Models asked for "only JSON" still add trailing commas, drop closing
brackets, or wrap the object in prose. repair_json() tries each strategy
in REPAIR_STRATEGIES in order and returns the first parse that succeeds.
"""

import json

import json_repair

from voice_notes.errors import StructuredOutputError

OPENERS = "{["
CLOSERS = "}]"


def parse_direct(text: str):
    return json.loads(text)


def parse_repaired(text: str):
    """Generic repair pass: trailing commas, unquoted keys, truncation."""
    repaired = json_repair.repair_json(text, skip_json_loads=True)
    result = json.loads(repaired)
    if result == "" and text.strip():
        raise ValueError("Repair produced an empty document")
    return result


def parse_bracket_span(text: str):
    """Slice from the first opening bracket to the last closing one, then repair."""
    start = min((i for i in (text.find(c) for c in OPENERS) if i != -1), default=-1)
    end = max(text.rfind(c) for c in CLOSERS)
    if start == -1 or end <= start:
        raise ValueError("No bracketed JSON span found")
    return parse_repaired(text[start:end + 1])


REPAIR_STRATEGIES = [parse_direct, parse_repaired, parse_bracket_span]


def repair_json(text: str):
    """Parse text as JSON, falling back to increasingly aggressive repairs.

    Raises StructuredOutputError when no strategy yields a dict or list.
    """
    errors = []
    for strategy in REPAIR_STRATEGIES:
        try:
            result = strategy(text)
        except (ValueError, TypeError, RecursionError) as e:
            errors.append(e)
            continue
        if isinstance(result, (dict, list)):
            return result
        errors.append(ValueError(f"{strategy.__name__} produced {type(result).__name__}, not an object"))
    raise StructuredOutputError(text, errors)
