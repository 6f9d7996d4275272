"""Tests for classification and selection of pending operations."""

import random
from datetime import timedelta

import pytest
from ccoperator.domain.models import TaskOperation, TaskState
from ccoperator.reconcile.scheduling import (
    DecisionKind,
    ExecutionQueue,
    classify,
    classify_operation,
    decide,
    execution_order,
    select_operation,
)
from helpers import NOW, make_operation

BACKOFF = timedelta(seconds=30)


def minutes_ago(minutes):
    return NOW - timedelta(minutes=minutes)


class TestClassification:
    def test_first_execution(self):
        assert classify_operation(make_operation("op")) is ExecutionQueue.first_execution

    def test_retry_execution(self):
        op = make_operation("op", state=TaskState.completed_with_error, task_id="t1")
        assert classify_operation(op) is ExecutionQueue.retry_execution

    def test_in_progress(self):
        op = make_operation("op", state=TaskState.in_execution, task_id="t1")
        assert classify_operation(op) is ExecutionQueue.in_progress

    def test_running_and_deleting_needs_stop(self):
        op = make_operation(
            "op", state=TaskState.in_execution, task_id="t1", deleting=True, finalizer=True
        )
        assert classify_operation(op) is ExecutionQueue.stop_execution

    @pytest.mark.parametrize(
        "op",
        [
            make_operation("done", state=TaskState.completed),
            make_operation("ignored", state=TaskState.completed_with_error, error_policy="ignore"),
            make_operation("invalid", operation="shrink"),
            make_operation("paused", paused=True),
            make_operation("deleting", deleting=True, finalizer=True),
        ],
        ids=lambda op: op.name,
    )
    def test_unclassified(self, op):
        assert classify_operation(op) is None

    def test_queues_are_disjoint(self):
        ops = [
            make_operation("first"),
            make_operation("retry", state=TaskState.completed_with_error, task_id="t1"),
            make_operation("running", state=TaskState.active, task_id="t2"),
            make_operation(
                "stop", state=TaskState.active, task_id="t3", deleting=True, finalizer=True
            ),
            make_operation("done", state=TaskState.completed, task_id="t4"),
        ]

        classified = classify(ops)

        names = [op.name for queue in ExecutionQueue for op in classified.queue(queue)]
        assert sorted(names) == ["first", "retry", "running", "stop"]
        assert len(names) == len(set(names))
        assert classified.counts() == {
            "stop_execution": 1,
            "first_execution": 1,
            "retry_execution": 1,
            "in_progress": 1,
        }


class TestExecutionOrder:
    def test_priority_then_creation_time(self):
        ops = [
            make_operation("rebalance-old", "rebalance", created=minutes_ago(30)),
            make_operation("remove", "remove_broker", created=minutes_ago(5)),
            make_operation("add-new", "add_broker", created=minutes_ago(1)),
            make_operation("add-old", "add_broker", created=minutes_ago(2)),
        ]

        assert [op.name for op in execution_order(ops)] == [
            "add-old",
            "add-new",
            "remove",
            "rebalance-old",
        ]

    def test_priority_invariant_holds_for_any_input_order(self):
        kinds = ["add_broker", "remove_broker", "rebalance"]
        rng = random.Random(7)
        ops = [
            make_operation(f"op-{n}", rng.choice(kinds), created=minutes_ago(rng.randint(1, 50)))
            for n in range(25)
        ]
        priority = {"add_broker": 2, "remove_broker": 1, "rebalance": 0}

        for _ in range(5):
            rng.shuffle(ops)
            head = classify(ops).first_execution[0]
            best = max(priority[op.current_task_operation] for op in ops)
            assert priority[head.current_task_operation] == best
            earliest = min(
                op.metadata.creation_timestamp
                for op in ops
                if priority[op.current_task_operation] == best
            )
            assert head.metadata.creation_timestamp == earliest


class TestSelection:
    def test_stop_wins_over_everything(self):
        ops = [
            make_operation("add", "add_broker"),
            make_operation("running", state=TaskState.in_execution, task_id="t1"),
            make_operation(
                "deleting", state=TaskState.in_execution, task_id="t2", deleting=True, finalizer=True
            ),
        ]

        decision = decide(ops, engine_busy=True, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.execute
        assert decision.selection.operation.name == "deleting"
        assert decision.selection.task_operation is TaskOperation.stop_execution
        assert decision.selection.is_stop

    def test_add_broker_before_ready_retry(self):
        ops = [
            make_operation(
                "retry",
                "remove_broker",
                state=TaskState.completed_with_error,
                finished=minutes_ago(10),
            ),
            make_operation("add", "add_broker"),
        ]

        selection = select_operation(classify(ops), now=NOW, retry_backoff=BACKOFF)

        assert selection.operation.name == "add"
        assert selection.queue is ExecutionQueue.first_execution

    def test_ready_retry_before_other_first_executions(self):
        ops = [
            make_operation("rebalance", "rebalance", created=minutes_ago(60)),
            make_operation(
                "retry",
                "rebalance",
                state=TaskState.completed_with_error,
                finished=minutes_ago(10),
            ),
        ]

        selection = select_operation(classify(ops), now=NOW, retry_backoff=BACKOFF)

        assert selection.operation.name == "retry"
        assert selection.queue is ExecutionQueue.retry_execution

    def test_retry_not_ready_blocks_first_execution(self):
        # Scenario B: backoff window not elapsed.
        ops = [
            make_operation("rebalance", "rebalance"),
            make_operation(
                "retry",
                "remove_broker",
                state=TaskState.completed_with_error,
                finished=NOW - timedelta(seconds=5),
            ),
        ]

        decision = decide(ops, engine_busy=False, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.requeue
        assert decision.reason == "nothing_to_execute"
        assert decision.selection is None

    def test_priority_selection_scenario(self):
        # Scenario A: three pending records on an idle engine.
        ops = [
            make_operation("rebalance", "rebalance", created=minutes_ago(3)),
            make_operation("remove", "remove_broker", created=minutes_ago(2)),
            make_operation("add", "add_broker", created=minutes_ago(1)),
        ]

        decision = decide(ops, engine_busy=False, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.execute
        assert decision.selection.operation.name == "add"
        assert decision.selection.task_operation is TaskOperation.add_broker


class TestSingleFlight:
    def test_engine_busy_defers_dispatch(self):
        decision = decide([make_operation("op")], engine_busy=True, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.requeue
        assert decision.reason == "engine_busy"
        assert decision.selection.operation.name == "op"

    def test_in_progress_record_defers_dispatch(self):
        ops = [
            make_operation("op"),
            make_operation("running", state=TaskState.active, task_id="t1"),
        ]

        decision = decide(ops, engine_busy=False, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.requeue
        assert decision.reason == "engine_busy"

    def test_only_in_progress_requeues(self):
        ops = [make_operation("running", state=TaskState.active, task_id="t1")]

        decision = decide(ops, engine_busy=True, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.requeue

    def test_nothing_pending_is_done(self):
        ops = [make_operation("done", state=TaskState.completed, task_id="t1")]

        decision = decide(ops, engine_busy=False, now=NOW, retry_backoff=BACKOFF)

        assert decision.kind is DecisionKind.done
        assert decision.classified.is_empty()
