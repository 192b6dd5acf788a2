import unittest

import pytest

from glustermgmt import lifecycle
from glustermgmt.api import Unrecognized, VolumeState
from glustermgmt.errors import InvalidTransition


class CheckTransitionTest(unittest.TestCase):

    def test_allowed(self):
        cases = [
            (VolumeState.CREATED, lifecycle.START, VolumeState.STARTED),
            (VolumeState.STOPPED, lifecycle.START, VolumeState.STARTED),
            (VolumeState.STARTED, lifecycle.STOP, VolumeState.STOPPED),
            (VolumeState.CREATED, lifecycle.DELETE, VolumeState.DELETING),
            (VolumeState.STOPPED, lifecycle.DELETE, VolumeState.DELETING),
            (VolumeState.STARTED, lifecycle.REBALANCE, VolumeState.STARTED),
            (VolumeState.CREATED, lifecycle.SET_OPTIONS, VolumeState.CREATED),
            (VolumeState.STOPPED, lifecycle.ADD_BRICKS, VolumeState.STOPPED),
            (VolumeState.STARTED, lifecycle.REMOVE_BRICKS, VolumeState.STARTED),
            (VolumeState.STARTED, lifecycle.QUOTA, VolumeState.STARTED),
            (VolumeState.STARTED, lifecycle.BITROT, VolumeState.STARTED),
        ]
        for current, operation, expected in cases:
            self.assertEqual(
                lifecycle.check_transition("v1", current, operation), expected
            )

    def test_rejected(self):
        cases = [
            (VolumeState.STARTED, lifecycle.START),
            (VolumeState.CREATED, lifecycle.STOP),
            (VolumeState.STOPPED, lifecycle.STOP),
            (VolumeState.STARTED, lifecycle.DELETE),
            (VolumeState.STOPPED, lifecycle.REBALANCE),
            (VolumeState.DELETING, lifecycle.START),
            (VolumeState.DELETING, lifecycle.DELETE),
            (VolumeState.UNKNOWN, lifecycle.STOP),
            (VolumeState.UNKNOWN, lifecycle.SET_OPTIONS),
            (VolumeState.CREATED, lifecycle.QUOTA),
            (VolumeState.STOPPED, lifecycle.BITROT),
        ]
        for current, operation in cases:
            with pytest.raises(InvalidTransition) as err:
                lifecycle.check_transition("v1", current, operation)
            self.assertEqual(err.value.volume, "v1")
            self.assertEqual(err.value.operation, operation)
            self.assertEqual(err.value.state, current.value)

    def test_absent_volume(self):
        with pytest.raises(InvalidTransition) as err:
            lifecycle.check_transition("v9", None, lifecycle.START)
        self.assertEqual(err.value.state, "absent")
        self.assertIn("'v9'", str(err.value))

    def test_unrecognized_state(self):
        state = Unrecognized("Hibernating")
        with pytest.raises(InvalidTransition) as err:
            lifecycle.check_transition("v1", state, lifecycle.STOP)
        self.assertEqual(err.value.state, state)

    def test_forced_start(self):
        self.assertEqual(
            lifecycle.check_transition(
                "v1", VolumeState.STARTED, lifecycle.START, force=True
            ), VolumeState.STARTED
        )
        with pytest.raises(InvalidTransition):
            lifecycle.check_transition(
                "v1", VolumeState.DELETING, lifecycle.START, force=True
            )

    def test_unknown_operation(self):
        with pytest.raises(ValueError):
            lifecycle.check_transition("v1", VolumeState.CREATED, "explode")
