"""
Chat orchestration - a human and one agent talking in turns.

Flow:
  1. The human answers the opening message.
  2. Stop when the end condition accepts the human's last message.
  3. The agent answers the human's message.
  4. The agent's answer becomes the next prompt to the human; repeat.

Both participants share one session, so the whole exchange can be read back
with ``store.get_by_session(session_id)``.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from loguru import logger

from agents.base import AgentBase
from agents.human_proxy import HumanProxy
from history import AgentMessage, new_message_id
from infrastructure.observability import observe, update_current_trace

EndCondition = Callable[[AgentMessage], bool]


@dataclass
class ChatResult:
    """
    Outcome of one ``start_chat`` run.

    Attributes:
        session_id: Session shared by the human and the agent.
        exchanges: Number of agent replies.
        messages: Every human and agent answer, in order.
    """

    session_id: str
    exchanges: int = 0
    messages: List[AgentMessage] = field(default_factory=list)

    @property
    def last_message(self) -> Optional[AgentMessage]:
        return self.messages[-1] if self.messages else None


class ChatWithHuman:
    """
    Relays messages between a human proxy and a single agent.

    Dependencies (injected via '__init__'):
        human  - HumanProxy answering at the console (or any front end)
        agent  - the agent the human talks to
    """

    def __init__(self, human: HumanProxy, agent: AgentBase) -> None:
        self.human = human
        self.agent = agent
        self.session_id = new_message_id()
        for participant in (human, agent):
            participant.set_session(self.session_id)
            participant.reset_history()
        logger.debug("Chat session {}: {} ⇄ {}", self.session_id, human.name, agent.name)

    @observe(name="chat_with_human")
    async def start_chat(
        self,
        initial_message: str,
        end_condition: EndCondition,
        max_exchanges: Optional[int] = None,
    ) -> ChatResult:
        """
        Run the chat until ``end_condition`` accepts a human message.

        Args:
            initial_message: First text shown to the human.
            end_condition: Predicate over the human's latest message.
            max_exchanges: Optional cap on agent replies (unbounded by default).

        Returns:
            A ``ChatResult`` with every answer exchanged.
        """
        if not isinstance(initial_message, str) or not initial_message.strip():
            raise ValueError("initial_message must be a non-empty string")
        if not callable(end_condition):
            raise TypeError("end_condition must be callable")

        update_current_trace(session_id=self.session_id, user_id=self.human.id)
        result = ChatResult(session_id=self.session_id)

        human_message = await self.human.send(initial_message)
        result.messages.append(human_message)

        while not end_condition(human_message):
            if max_exchanges is not None and result.exchanges >= max_exchanges:
                logger.info("Chat {} stopped after {} exchange(s)", self.session_id, result.exchanges)
                break
            agent_message = await self.agent.send(human_message.content)
            result.exchanges += 1
            result.messages.append(agent_message)

            human_message = await self.human.send(agent_message.content)
            result.messages.append(human_message)

        logger.info("Chat {} finished after {} exchange(s)", self.session_id, result.exchanges)
        return result
