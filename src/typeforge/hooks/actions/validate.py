"""Built-in ``validate`` action: re-validate and coerce the payload in a flow."""

import dataclasses

from jsonschema import Draft202012Validator

from typeforge.errors import InvalidHookArgsError, UnknownTypeError, ValidationFailedError
from typeforge.hooks.actions.args import check_args
from typeforge.hooks.types import HookContext, HookPhase
from typeforge.validation.compiler import SchemaCache
from typeforge.validation.types import Mode

ARGS_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "mode": {"enum": ["create", "update"]},
        "allowUnknown": {"type": "boolean"},
    },
}

_PHASE_MODES = {
    HookPhase.BEFORE_CREATE: Mode.CREATE,
    HookPhase.BEFORE_UPDATE: Mode.UPDATE,
}


class ValidateAction:
    """Validates ``ctx.payload`` against the datatype's fields.

    Args:
        mode: "create" or "update"; defaults from the phase
            (beforeCreate -> create, beforeUpdate -> update)
        allowUnknown: keep undeclared payload keys instead of dropping them
    """

    name = "validate"

    def __init__(self, definitions, schema_cache: SchemaCache):
        self.definitions = definitions
        self.schema_cache = schema_cache
        self._args_validator = Draft202012Validator(ARGS_SCHEMA)

    def __call__(self, ctx: HookContext) -> HookContext:
        args = check_args(self.name, self._args_validator, ctx.meta.step_args)

        if "mode" in args:
            mode = Mode(args["mode"])
        elif ctx.meta.phase in _PHASE_MODES:
            mode = _PHASE_MODES[ctx.meta.phase]
        else:
            phase = ctx.meta.phase.value if ctx.meta.phase else None
            raise InvalidHookArgsError(
                self.name,
                [{"path": "/mode", "keyword": "required",
                  "message": f"mode is required for phase {phase}"}],
            )

        definition = self.definitions.get(ctx.meta.type_key)
        if definition is None:
            raise UnknownTypeError(ctx.meta.type_key)

        outcome = self.schema_cache.get(definition, mode).validate(
            ctx.payload, allow_unknown=bool(args.get("allowUnknown", False))
        )
        if not outcome.ok:
            raise ValidationFailedError(definition.key_lower, outcome.errors)
        return dataclasses.replace(ctx, payload=outcome.value)
