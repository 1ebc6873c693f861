"""
Model endpoint contract.

Any object with a matching ``invoke`` method qualifies; the orchestrator
never inspects the concrete type, which keeps test doubles trivial.
"""

from typing import Protocol, Sequence, runtime_checkable

from ..models import ConversationTurn, GenerationConfig, ModelResponse
from ..tools.registry import ToolDeclaration


@runtime_checkable
class ModelEndpoint(Protocol):
    """Accepts a conversation plus tool declarations, returns a ModelResponse.

    Implementations raise ``EndpointUnavailable`` for transport failures and
    ``InvalidRequest`` when the request is rejected.
    """

    def invoke(
        self,
        history: Sequence[ConversationTurn],
        tool_declarations: Sequence[ToolDeclaration],
        generation: GenerationConfig,
    ) -> ModelResponse:
        ...
