"""Invocation processors for the workflow engine.

Handles the action types that call out to collaborators (Actor, AI,
Activity) or simply evaluate data (Compose).
"""

from typing import TYPE_CHECKING

from ...errors.models import CollaboratorUnavailableError
from ..context import ExecutionContext
from ..models import ActionOutcome, ActivityAction, ActorAction, AIAction, ComposeAction, utc_now

if TYPE_CHECKING:
    from ..executor import ActionDispatcher

AI_AGENT_ACTOR_TYPE = "AIAgent"
AI_CHAT_METHOD = "chat"


class ActorProcessor:
    """Processes Actor actions: resolve the target actor, send, await the reply."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: ActorAction, context: ExecutionContext) -> ActionOutcome:
        evaluator = self.dispatcher.evaluator
        actor_id = await evaluator.evaluate(action.actor_id, context)
        actor_type = await evaluator.evaluate(action.actor_type, context)
        method = await evaluator.evaluate(action.method, context)
        args = await evaluator.evaluate_inputs(action.args, context)

        reply = await send_to_actor(self.dispatcher, name, actor_type, actor_id, method, args)
        return ActionOutcome.success(reply)


class AIProcessor:
    """Processes AI actions by chatting with an AI agent actor."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: AIAction, context: ExecutionContext) -> ActionOutcome:
        evaluator = self.dispatcher.evaluator
        args = {
            "message": await evaluator.evaluate(action.prompt, context),
            "systemPrompt": await evaluator.evaluate(action.system_prompt, context),
            "temperature": await evaluator.evaluate(action.temperature, context),
            "model": await evaluator.evaluate(action.model, context),
        }
        reply = await send_to_actor(self.dispatcher, name, AI_AGENT_ACTOR_TYPE, None, AI_CHAT_METHOD, args)
        return ActionOutcome.success(reply)


class ActivityProcessor:
    """Processes Activity actions through the activity store."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: ActivityAction, context: ExecutionContext) -> ActionOutcome:
        store = self.dispatcher.collaborators.activities
        if store is None:
            raise CollaboratorUnavailableError(f"Activity store not configured for action '{name}'")

        activity_input = await self.dispatcher.evaluator.evaluate_inputs(action.input, context)
        activity_id = f"{context.instance_id}-{name}"
        await store.create(
            {
                "activityId": activity_id,
                "name": action.activity_name,
                "input": activity_input,
                "status": "pending",
                "createdAt": utc_now().isoformat(),
            }
        )
        result = await store.execute(activity_id)
        return ActionOutcome.success(result)


class ComposeProcessor:
    """Processes Compose actions: the evaluated inputs are the output."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: ComposeAction, context: ExecutionContext) -> ActionOutcome:
        return ActionOutcome.success(await self.dispatcher.evaluator.evaluate_inputs(action.inputs, context))


async def send_to_actor(dispatcher: "ActionDispatcher", name, actor_type, actor_id, method, args):
    """Route to an actor (unless an id is given) and wait for its reply."""
    collaborators = dispatcher.collaborators
    if collaborators.transport is None:
        raise CollaboratorUnavailableError(f"Message transport not configured for action '{name}'")

    if not actor_id:
        if collaborators.router is None:
            raise CollaboratorUnavailableError(f"Actor router not configured for action '{name}'")
        actor_id = await collaborators.router.route_to_actor(actor_type)

    return await collaborators.transport.send_and_wait({"targetActorId": actor_id, "method": method, "args": args})
