# Copyright 2026 The glustermgmt Authors
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""
Volume lifecycle::

    unknown -> created -> started <-> stopped -> deleting -> (removed)

Created and stopped volumes may be deleted, a started volume has to be
stopped first. Any state may fall back to unknown when a fetch cannot
confirm the volume, and a fetch may reveal any state from unknown.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Tuple, Union

from glustermgmt.api import Unrecognized, VolumeState
from glustermgmt.errors import InvalidTransition

State = Union[VolumeState, Unrecognized]

START = "start"
STOP = "stop"
DELETE = "delete"
REBALANCE = "rebalance"
SET_OPTIONS = "set options"
ADD_BRICKS = "add bricks"
REMOVE_BRICKS = "remove bricks"
QUOTA = "manage quota of"
BITROT = "manage bitrot of"

_CONFIGURABLE = frozenset(
    (VolumeState.CREATED, VolumeState.STARTED, VolumeState.STOPPED)
)

# operation -> (states it is allowed from, state it leads to)
TRANSITIONS: Dict[str, Tuple[FrozenSet[VolumeState], Optional[VolumeState]]] = {
    START: (
        frozenset((VolumeState.CREATED, VolumeState.STOPPED)),
        VolumeState.STARTED,
    ),
    STOP: (frozenset((VolumeState.STARTED, )), VolumeState.STOPPED),
    DELETE: (
        frozenset((VolumeState.CREATED, VolumeState.STOPPED)),
        VolumeState.DELETING,
    ),
    REBALANCE: (frozenset((VolumeState.STARTED, )), None),
    SET_OPTIONS: (_CONFIGURABLE, None),
    ADD_BRICKS: (_CONFIGURABLE, None),
    REMOVE_BRICKS: (_CONFIGURABLE, None),
    QUOTA: (frozenset((VolumeState.STARTED, )), None),
    BITROT: (frozenset((VolumeState.STARTED, )), None),
}


def check_transition(
    name: str,
    current: Optional[State],
    operation: str,
    force: bool = False,
) -> State:
    """
    Validates ``operation`` against the current state of volume ``name``
    and returns the state the volume is expected to reach. Raises
    InvalidTransition otherwise, without contacting the cluster.

    A forced start is also accepted on a started volume, which restarts
    its missing brick processes.
    """
    if current is None:
        raise InvalidTransition(name, "absent", operation)
    if isinstance(current, Unrecognized):
        raise InvalidTransition(name, current, operation)
    try:
        allowed, target = TRANSITIONS[operation]
    except KeyError:
        raise ValueError(f"unknown volume operation '{operation}'")
    if operation == START and force and current == VolumeState.STARTED:
        return VolumeState.STARTED
    if current not in allowed:
        raise InvalidTransition(name, current.value, operation)
    return target if target is not None else current
