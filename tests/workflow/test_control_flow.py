"""Tests for the control-flow actions: If, Foreach, Parallel, loops, Retry and Scope."""

import asyncio

import pytest

from loomflow.workflow.executor import WorkflowExecutor
from loomflow.workflow.models import ActionStatus, InstanceStatus


def compose(value, run_after=None):
    action = {"type": "Compose", "inputs": value}
    if run_after is not None:
        action["runAfter"] = run_after
    return action


def actor(method, args=None, run_after=None):
    action = {"type": "Actor", "inputs": {"actorType": "Worker", "method": method, "args": args}}
    if run_after is not None:
        action["runAfter"] = run_after
    return action


def loop(loop_type, condition, actions, **inputs):
    return {"type": loop_type, "inputs": {"condition": condition, "actions": actions, **inputs}}


def boom(message):
    raise RuntimeError("worker crashed")


class TestIf:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode,expected", [("fast", {"quick": "fast path"}), ("slow", {"careful": "slow path"})])
    async def test_branch_selection(self, executor, make_workflow, mode, expected):
        document = make_workflow(
            {
                "choose": {
                    "type": "If",
                    "inputs": {
                        "condition": "@equals(parameters('mode'), 'fast')",
                        "actions": {"quick": compose("fast path")},
                        "else": {"actions": {"careful": compose("slow path")}},
                    },
                }
            },
            parameters={"mode": {"type": "string"}},
        )

        result = await executor.run(document, parameters={"mode": mode})

        assert result.actions["choose"].output == {"conditionResult": mode == "fast", "results": expected}

    @pytest.mark.asyncio
    async def test_missing_else_branch_succeeds_empty(self, executor, make_workflow):
        document = make_workflow(
            {"choose": {"type": "If", "inputs": {"condition": False, "actions": {"never": compose(1)}}}}
        )

        result = await executor.run(document)

        assert result.actions["choose"].output == {"conditionResult": False, "results": {}}

    @pytest.mark.asyncio
    async def test_failing_branch_fails_if(self, executor, transport, make_workflow):
        transport.on("explode", boom)
        document = make_workflow(
            {"choose": {"type": "If", "inputs": {"condition": True, "actions": {"bad": actor("explode")}}}}
        )

        result = await executor.run(document)

        assert result.failed_action == "choose"
        assert result.error.details["failedAction"] == "bad"


class TestForeach:
    @pytest.mark.asyncio
    async def test_runs_body_per_item_in_order(self, executor, make_workflow):
        document = make_workflow(
            {
                "each": {
                    "type": "Foreach",
                    "inputs": {
                        "items": "@parameters('skus')",
                        "actions": {
                            "label": compose("@concat(string(variables('iterationIndex')), ':', item())"),
                        },
                    },
                }
            },
            parameters={"skus": {"type": "array"}},
        )

        result = await executor.run(document, parameters={"skus": ["a", "b", "c"]})

        assert result.actions["each"].output == [{"label": "0:a"}, {"label": "1:b"}, {"label": "2:c"}]

    @pytest.mark.asyncio
    async def test_items_must_be_array(self, executor, make_workflow):
        document = make_workflow({"each": {"type": "Foreach", "inputs": {"items": "oops", "actions": {"x": compose(1)}}}})

        result = await executor.run(document)

        assert result.error.code == "ActionExecutionError"
        assert "array" in result.error.message

    @pytest.mark.asyncio
    async def test_failure_stops_iteration_with_partial_results(self, executor, transport, make_workflow):
        def process(message):
            if message["args"] == 2:
                raise ValueError("bad item")
            return {"done": message["args"]}

        transport.on("process", process)
        document = make_workflow(
            {"each": {"type": "Foreach", "inputs": {"items": [1, 2, 3], "actions": {"call": actor("process", "@item()")}}}}
        )

        result = await executor.run(document)

        assert result.status is InstanceStatus.FAILED
        assert result.actions["each"].output == [{"call": {"done": 1}}, {}]
        assert [m["args"] for m in transport.messages] == [1, 2]

    @pytest.mark.asyncio
    async def test_nested_if_sees_item(self, executor, make_workflow):
        document = make_workflow(
            {
                "each": {
                    "type": "Foreach",
                    "inputs": {
                        "items": [1, 5],
                        "actions": {
                            "check": {
                                "type": "If",
                                "inputs": {
                                    "condition": "@greater(item(), 2)",
                                    "actions": {"big": compose("@item()")},
                                    "else": {"small": compose("small")},
                                },
                            }
                        },
                    },
                }
            }
        )

        result = await executor.run(document)

        outputs = [iteration["check"]["results"] for iteration in result.actions["each"].output]
        assert outputs == [{"small": "small"}, {"big": 5}]


class TestParallel:
    @pytest.mark.asyncio
    async def test_branches_overlap(self, executor, transport, make_workflow):
        in_flight = 0
        peak = 0

        async def work(message):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.05)
            in_flight -= 1
            return message["args"]

        transport.on("work", work)
        document = make_workflow(
            {"fan": {"type": "Parallel", "inputs": {"actions": {n: actor("work", n) for n in ("x", "y", "z")}}}}
        )

        loop_time = asyncio.get_running_loop().time
        started = loop_time()
        result = await executor.run(document)
        elapsed = loop_time() - started

        assert result.actions["fan"].output == {"x": "x", "y": "y", "z": "z"}
        assert peak == 3
        assert elapsed < 0.14

    @pytest.mark.asyncio
    async def test_one_failed_branch_fails_parallel(self, executor, transport, make_workflow):
        transport.on("explode", boom)
        document = make_workflow(
            {"fan": {"type": "Parallel", "inputs": {"actions": {"ok": compose(1), "bad": actor("explode")}}}}
        )

        result = await executor.run(document)

        assert result.actions["fan"].status is ActionStatus.FAILED
        assert result.actions["fan"].output == {"ok": 1, "bad": None}
        assert result.error.details["failedAction"] == "bad"


class TestLoops:
    @pytest.mark.asyncio
    async def test_until_stops_at_max_iterations(self, executor, transport, make_workflow):
        document = make_workflow(
            {"poll": loop("Until", "@equals(1, 2)", {"check": actor("status")}, limit={"count": 3})}
        )

        result = await executor.run(document)

        output = result.actions["poll"].output
        assert result.actions["poll"].status is ActionStatus.SUCCEEDED
        assert output["status"] == "max-iterations"
        assert output["iterations"] == 3
        assert output["conditionMet"] is False
        assert len(transport.messages) == 3

    @pytest.mark.asyncio
    async def test_until_condition_sees_loop_variables(self, executor, make_workflow):
        document = make_workflow(
            {
                "count": loop(
                    "Until",
                    "@equals(variables('loopResult').index, 2)",
                    {"index": compose("@variables('loopIndex')")},
                )
            }
        )

        result = await executor.run(document)

        output = result.actions["count"].output
        assert output["status"] == "completed"
        assert output["conditionMet"] is True
        assert output["iterations"] == 3
        assert output["results"] == [{"index": 0}, {"index": 1}, {"index": 2}]
        assert output["lastResult"] == {"index": 2}

    @pytest.mark.asyncio
    async def test_until_checks_before_first_iteration(self, executor, transport, make_workflow):
        result = await executor.run(make_workflow({"poll": loop("Until", True, {"check": actor("status")})}))

        assert result.actions["poll"].output["iterations"] == 0
        assert transport.messages == []

    @pytest.mark.asyncio
    async def test_do_until_runs_body_once(self, executor, transport, make_workflow):
        result = await executor.run(make_workflow({"poll": loop("DoUntil", "@equals(1, 1)", {"check": actor("status")})}))

        assert result.actions["poll"].output["iterations"] == 1
        assert len(transport.messages) == 1

    @pytest.mark.asyncio
    async def test_while_runs_while_condition_holds(self, executor, transport, make_workflow):
        document = make_workflow(
            {"drain": loop("While", "@less(variables('loopIndex'), 3)", {"take": actor("take", "@variables('loopCount')")})}
        )

        result = await executor.run(document)

        assert result.actions["drain"].output["iterations"] == 3
        assert [m["args"] for m in transport.messages] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_default_iteration_limit(self, executor, make_workflow):
        result = await executor.run(make_workflow({"spin": loop("Until", False, {"noop": compose(1)})}))

        assert result.actions["spin"].output["iterations"] == executor.config.default_loop_count

    @pytest.mark.asyncio
    async def test_time_limit(self, engine_config, collaborators, transport, recording_sleep, fake_clock, make_workflow):
        def slow_status(message):
            fake_clock.advance(10)
            return "pending"

        transport.on("status", slow_status)
        executor = WorkflowExecutor(
            config=engine_config, collaborators=collaborators, sleep=recording_sleep, clock=fake_clock
        )
        document = make_workflow(
            {"poll": loop("Until", False, {"check": actor("status")}, limit={"count": 100, "timeout": "PT15S"})}
        )

        result = await executor.run(document)

        output = result.actions["poll"].output
        assert output["status"] == "timeout"
        assert output["iterations"] == 2
        assert result.status is InstanceStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_time_limit_reached_exactly_allows_another_iteration(
        self, engine_config, collaborators, transport, recording_sleep, fake_clock, make_workflow
    ):
        def slow_status(message):
            fake_clock.advance(5)
            return "pending"

        transport.on("status", slow_status)
        executor = WorkflowExecutor(
            config=engine_config, collaborators=collaborators, sleep=recording_sleep, clock=fake_clock
        )
        document = make_workflow(
            {"poll": loop("Until", False, {"check": actor("status")}, limit={"count": 100, "timeout": "PT10S"})}
        )

        result = await executor.run(document)

        output = result.actions["poll"].output
        assert output["status"] == "timeout"
        assert output["iterations"] == 3

    @pytest.mark.asyncio
    async def test_delay_between_iterations(self, executor, recording_sleep, make_workflow):
        document = make_workflow(
            {
                "poll": loop(
                    "Until",
                    False,
                    {"noop": compose(1)},
                    limit={"count": 3},
                    delay={"interval": {"count": 2, "unit": "second"}},
                )
            }
        )

        await executor.run(document)

        assert recording_sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_body_failure_fails_loop(self, executor, transport, make_workflow):
        transport.on("explode", boom)

        result = await executor.run(make_workflow({"poll": loop("Until", False, {"step": actor("explode")})}))

        poll = result.actions["poll"]
        assert poll.status is ActionStatus.FAILED
        assert poll.output["status"] == "failed"
        assert poll.output["iterations"] == 0
        assert "Action 'step' failed" in poll.error.message
        assert result.failed_action == "poll"


class TestRetryAction:
    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, executor, transport, recording_sleep, make_workflow):
        def flaky(message):
            if message["args"] < 3:
                raise ConnectionError("not yet")
            return "ok"

        transport.on("flaky", flaky)
        document = make_workflow(
            {
                "again": {
                    "type": "Retry",
                    "inputs": {
                        "action": actor("flaky", "@variables('retryAttempt')"),
                        "retryPolicy": {"type": "fixed", "count": 3, "interval": "PT2S"},
                    },
                }
            }
        )

        result = await executor.run(document)

        output = result.actions["again"].output
        assert output["status"] == "success"
        assert output["attempts"] == 3
        assert output["result"] == "ok"
        assert [attempt["status"] for attempt in output["attemptResults"]] == ["Failed", "Failed", "Succeeded"]
        assert recording_sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_default_policy_exhaustion(self, executor, transport, recording_sleep, make_workflow):
        transport.on("explode", boom)
        document = make_workflow({"again": {"type": "Retry", "inputs": {"action": actor("explode")}}})

        result = await executor.run(document)

        again = result.actions["again"]
        assert again.status is ActionStatus.FAILED
        assert again.output["status"] == "failed"
        assert again.output["attempts"] == 4
        assert again.error.code == "RetryExhaustedError"
        assert len(recording_sleep.delays) == 3
        for delay, base in zip(recording_sleep.delays, [1.0, 2.0, 4.0], strict=True):
            assert max(1.0, base * 0.75) <= delay <= base * 1.25


class TestScope:
    @pytest.mark.asyncio
    async def test_scope_outputs(self, executor, make_workflow):
        document = make_workflow(
            {"group": {"type": "Scope", "inputs": {"actions": {"a": compose(1), "b": compose(2, {"a": []})}}}}
        )

        result = await executor.run(document)

        assert result.actions["group"].output == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_inner_failure_handled_outside(self, executor, transport, make_workflow):
        transport.on("explode", boom)
        document = make_workflow(
            {
                "group": {"type": "Scope", "inputs": {"actions": {"inner": actor("explode")}}},
                "cleanup": compose("@actions('group').error.message", {"group": ["Failed"]}),
            }
        )

        result = await executor.run(document)

        assert result.status is InstanceStatus.COMPLETED
        assert result.actions["group"].status is ActionStatus.FAILED
        assert result.actions["cleanup"].output.startswith("Action 'inner' failed")

    @pytest.mark.asyncio
    async def test_inner_results_stay_local(self, executor, make_workflow):
        document = make_workflow(
            {
                "group": {"type": "Scope", "inputs": {"actions": {"secret-step": compose(1)}}},
                "peek": compose("@actions('secret-step')", {"group": []}),
            }
        )

        result = await executor.run(document)

        assert "secret-step" not in result.actions
        assert result.actions["peek"].output is None
