"""Step argument checking for built-in actions."""

from typing import Any

from jsonschema import Draft202012Validator

from typeforge.errors import InvalidHookArgsError


def check_args(action: str, validator: Draft202012Validator, args: Any) -> dict[str, Any]:
    """Validate step args against an action's schema.

    Raises:
        InvalidHookArgsError: With one issue per schema violation
    """
    args = {} if args is None else args
    issues = [
        {
            "path": "/" + "/".join(str(p) for p in error.absolute_path),
            "keyword": str(error.validator),
            "message": error.message,
        }
        for error in validator.iter_errors(args)
    ]
    if issues:
        raise InvalidHookArgsError(action, issues)
    return args
