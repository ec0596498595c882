"""Task 状态机测试 -- 合法流转、终态、优先级排序权重"""

import pytest
from opspilot.core.models import (
    PRIORITY_RANK,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    TaskPriority,
    TaskStatus,
    validate_transition,
)


class TestTransitions:
    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (TaskStatus.PENDING_APPROVAL, TaskStatus.APPROVED),
            (TaskStatus.PENDING_APPROVAL, TaskStatus.REJECTED),
            (TaskStatus.APPROVED, TaskStatus.EXECUTING),
            (TaskStatus.EXECUTING, TaskStatus.COMPLETED),
            (TaskStatus.EXECUTING, TaskStatus.FAILED),
        ],
    )
    def test_valid_transitions(self, from_status, to_status):
        assert validate_transition(from_status, to_status)

    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (TaskStatus.PENDING_APPROVAL, TaskStatus.EXECUTING),
            (TaskStatus.PENDING_APPROVAL, TaskStatus.COMPLETED),
            (TaskStatus.APPROVED, TaskStatus.REJECTED),
            (TaskStatus.APPROVED, TaskStatus.COMPLETED),
            (TaskStatus.EXECUTING, TaskStatus.APPROVED),
        ],
    )
    def test_invalid_transitions(self, from_status, to_status):
        assert not validate_transition(from_status, to_status)

    def test_terminal_states_have_no_outgoing_edges(self):
        """终态不可再流转"""
        for status in TERMINAL_STATES:
            assert VALID_TRANSITIONS[status] == set()
            for target in TaskStatus:
                assert not validate_transition(status, target)

    def test_every_status_has_entry(self):
        assert set(VALID_TRANSITIONS) == set(TaskStatus)


class TestPriority:
    def test_rank_order(self):
        assert (
            TaskPriority.URGENT.rank
            > TaskPriority.HIGH.rank
            > TaskPriority.MEDIUM.rank
            > TaskPriority.LOW.rank
        )

    def test_rank_table_covers_all(self):
        assert set(PRIORITY_RANK) == set(TaskPriority)
