"""
Requirements Files

JSON description of a graph's operators and buffers, so a plan can be
computed outside of the allocator that normally feeds the planner.

Format:
    {
      "name": "allcnn",                       # optional
      "scratch_size": 8192,
      "operator_count": 3,                    # optional, defaults to len(operators)
      "operators": [
        {"index": 0, "type": "conv_2d",
         "params": {"input_height": 3, "input_width": 3, "input_channel": 3,
                    "filter_height": 3, "filter_width": 3,
                    "output_height": 3, "output_width": 3, "output_channel": 5,
                    "padding_height": 1, "padding_width": 1}},
        {"index": 1, "type": "add"}
      ],
      "buffers": [
        {"size": 27, "first_time_used": 0, "last_time_used": 1,
         "consumers": [0], "producer": null, "offline_offset": null}
      ],
      "config": {"line_width": 80}            # optional PlannerConfig fields
    }
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from memplan.config import PlannerConfig
from memplan.core.errors import InvalidRequirementError
from memplan.core.structures import Conv2DParams, PaddingType
from memplan.logging import get_logger
from memplan.planner.topological import TopologicalMemoryPlanner


def load_requirements(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a requirements document from disk"""
    path = Path(path)
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidRequirementError(f"{path}: not valid JSON ({e})") from e
    if not isinstance(data, dict):
        raise InvalidRequirementError(f"{path}: top level must be an object")
    return data


def _params_from_dict(data: Dict[str, Any]) -> Conv2DParams:
    if not isinstance(data, dict):
        raise InvalidRequirementError(f"operator params must be an object, got {data!r}")
    values = dict(data)
    try:
        if 'padding_type' in values:
            values['padding_type'] = PaddingType(values['padding_type'])
        return Conv2DParams(**values)
    except (TypeError, ValueError) as e:
        raise InvalidRequirementError(f"bad operator params: {e}") from e


def _require_int(value, what: str, minimum: int = 0) -> int:
    # bool is an int subclass but never a valid count or offset
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequirementError(f"{what} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidRequirementError(f"{what} must be at least {minimum}, got {value}")
    return value


def _membership(indices, operator_count: int, what: str):
    if not isinstance(indices, list):
        raise InvalidRequirementError(f"{what} operators must be a list, got {indices!r}")
    flags = [False] * operator_count
    for i in indices:
        _require_int(i, f"{what} operator")
        if i >= operator_count:
            raise InvalidRequirementError(f"{what} operator {i} outside 0..{operator_count - 1}")
        flags[i] = True
    return flags


def _check_document(data: Dict[str, Any]):
    for key in ('scratch_size', 'operators', 'buffers'):
        if key not in data:
            raise InvalidRequirementError(f"requirements missing '{key}'")
    _require_int(data['scratch_size'], "scratch_size")
    if 'operator_count' in data:
        _require_int(data['operator_count'], "operator_count")
    if not isinstance(data.get('config', {}), dict):
        raise InvalidRequirementError("config must be an object")
    for key in ('operators', 'buffers'):
        if not isinstance(data[key], list):
            raise InvalidRequirementError(f"{key} must be a list")

    for position, op in enumerate(data['operators']):
        if not isinstance(op, dict):
            raise InvalidRequirementError(f"operator {position} must be an object")
        if 'type' not in op:
            raise InvalidRequirementError(f"operator {position} has no type")
        if 'index' in op:
            _require_int(op['index'], f"operator {position} index")
    for position, buffer in enumerate(data['buffers']):
        if not isinstance(buffer, dict):
            raise InvalidRequirementError(f"buffer {position} must be an object")
        missing = [key for key in ('size', 'first_time_used', 'last_time_used') if key not in buffer]
        if missing:
            raise InvalidRequirementError(f"buffer {position} missing {', '.join(missing)}")
        for key in ('size', 'first_time_used', 'last_time_used'):
            _require_int(buffer[key], f"buffer {position} {key}")
        for key in ('producer', 'offline_offset'):
            if buffer.get(key) is not None:
                _require_int(buffer[key], f"buffer {position} {key}")


def planner_from_dict(data: Dict[str, Any], reporter=None,
                      config: Optional[PlannerConfig] = None) -> TopologicalMemoryPlanner:
    """
    Build and populate a planner from a requirements document.

    Args:
        data: Parsed requirements document
        reporter: Sink passed on to the planner (default: memplan.logging.get_logger())
        config: Overrides the document's "config" section

    Raises:
        InvalidRequirementError: malformed document
        PlannerError: registration rejected by the planner
    """
    reporter = reporter if reporter is not None else get_logger()

    # Problems with the document itself; the planner reports its own
    try:
        _check_document(data)
        operators = data['operators']
        operator_count = data.get('operator_count', len(operators))
        if config is None:
            config = PlannerConfig.from_dict(data.get('config', {}))
        params = [_params_from_dict(op['params']) if op.get('params') is not None else None
                  for op in operators]
        memberships = []
        for buffer in data['buffers']:
            producer = buffer.get('producer')
            memberships.append((
                _membership(buffer.get('consumers', []), operator_count, "consumer"),
                _membership([] if producer is None else [producer], operator_count, "producer"),
            ))
    except (InvalidRequirementError, TypeError, ValueError) as e:
        reporter.error(str(e))
        if isinstance(e, InvalidRequirementError):
            raise
        raise InvalidRequirementError(str(e)) from e

    planner = TopologicalMemoryPlanner(bytearray(data['scratch_size']), operator_count,
                                       reporter=reporter, config=config)

    for position, (op, op_params) in enumerate(zip(operators, params)):
        planner.add_operator_info(op.get('index', position), op['type'], op_params)

    for buffer, (inputs, outputs) in zip(data['buffers'], memberships):
        planner.add_buffer(
            buffer['size'],
            buffer['first_time_used'],
            buffer['last_time_used'],
            inputs,
            outputs,
            offline_offset=buffer.get('offline_offset'),
        )
    return planner


def plan_to_dict(planner: TopologicalMemoryPlanner, name: Optional[str] = None) -> Dict[str, Any]:
    """Computed plan as a JSON-serializable dictionary"""
    result = {
        'arena_size_bytes': planner.get_maximum_memory_size(),
        'offsets': [planner.get_offset_for_buffer(i) for i in range(planner.get_buffer_count())],
        'reversed_operators': planner.reversed_operators(),
        'report': planner.generate_report().to_dict(),
    }
    if name is not None:
        result['name'] = name
    return result
