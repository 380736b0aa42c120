from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

from tierlist.services.content import EvaluationParameter, ParameterEdit, ReviewFactor
from tierlist.services.ids import make_random_code

PARAMETER_ID_SIZE = 8

IdFactory = Callable[[], str]


def new_parameter_id() -> str:
    return make_random_code(PARAMETER_ID_SIZE, "param")


def resolve_parameters(
    old_params: Sequence[EvaluationParameter],
    new_params: Sequence[ParameterEdit],
    *,
    id_factory: IdFactory = new_parameter_id,
) -> tuple[list[EvaluationParameter], list[int]]:
    """Assign ids to the edited schema and find which old slot each new slot carries.

    A new parameter carries an old one when its ``id`` matches; without a
    matching id its ``old_index`` hint is used. Returns the new parameter list
    and, per new slot, the old position it copies (``-1`` for a new one).

    Several new slots may carry the same old slot. The first keeps the old id,
    the others get fresh ids so ids stay unique within the schema.
    """
    old_position_by_id = {param.id: index for index, param in enumerate(old_params)}
    used_ids: set[str] = set()
    resolved: list[EvaluationParameter] = []
    sources: list[int] = []

    for edit in new_params:
        if edit.id is not None and edit.id in old_position_by_id:
            source = old_position_by_id[edit.id]
        elif edit.old_index >= 0:
            source = edit.old_index
        else:
            source = -1

        param_id = old_params[source].id if 0 <= source < len(old_params) else None
        if param_id is None or param_id in used_ids:
            param_id = id_factory()
            while param_id in used_ids or param_id in old_position_by_id:
                param_id = id_factory()
        used_ids.add(param_id)

        resolved.append(
            EvaluationParameter(id=param_id, name=edit.name, is_point=edit.is_point, weight=edit.weight)
        )
        sources.append(source)

    return resolved, sources


def remap_factors(sources: Sequence[int], existing: Sequence[ReviewFactor]) -> list[ReviewFactor]:
    """Build one review's factor array for the new schema.

    Slots whose source is negative or past the end of ``existing`` start empty.
    """
    factors: list[ReviewFactor] = []
    for source in sources:
        if 0 <= source < len(existing):
            factors.append(existing[source])
        else:
            factors.append(ReviewFactor(info="", point=0.0))
    return factors


def remap(
    old_params: Sequence[EvaluationParameter],
    new_params: Sequence[ParameterEdit],
    review_factors: Mapping[str, Sequence[ReviewFactor]],
    *,
    id_factory: IdFactory = new_parameter_id,
) -> tuple[list[EvaluationParameter], dict[str, list[ReviewFactor]]]:
    resolved, sources = resolve_parameters(old_params, new_params, id_factory=id_factory)
    return resolved, {
        review_id: remap_factors(sources, factors) for review_id, factors in review_factors.items()
    }
