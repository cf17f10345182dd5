"""
Dispatch table for export and import strategies.

Strategies are registered under a (deployment type, direction, format)
key. The ``None`` deployment key is the explicit entry used for
unrecognized deployment types, so adding a platform is a registration,
not a control-flow change.
"""

import logging
from typing import Dict, List, Optional, Tuple, Type

from dbstage.models.config import ArtifactFormat, DeploymentType, Direction

logger = logging.getLogger(__name__)

StrategyKey = Tuple[Optional[DeploymentType], Direction, ArtifactFormat]


class StrategyFactory:
    """
    Registry of export/import strategy classes.
    """
    
    # Registry of strategy classes keyed by (deployment, direction, format)
    _strategies: Dict[StrategyKey, Type] = {}
    
    @classmethod
    def register_strategy(
        cls,
        deployment: Optional[DeploymentType],
        direction: Direction,
        artifact_format: ArtifactFormat,
        strategy_class: Type
    ) -> None:
        """
        Register a strategy class with the factory.
        
        Args:
            deployment: Deployment type, or None for the unrecognized-type entry
            direction: Export or import
            artifact_format: Artifact format the strategy produces or consumes
            strategy_class: Strategy class to register
        """
        cls._strategies[(deployment, direction, artifact_format)] = strategy_class
        label = deployment.value if deployment else "default"
        logger.debug(f"Registered {direction.value} strategy {strategy_class.__name__} for {label}/{artifact_format.value}")
    
    @classmethod
    def get_strategy_class(
        cls,
        deployment: Optional[DeploymentType],
        direction: Direction,
        artifact_format: ArtifactFormat
    ) -> Optional[Type]:
        """Registered strategy class for the key, or None."""
        return cls._strategies.get((deployment, direction, artifact_format))
    
    @classmethod
    def registered_formats(
        cls,
        deployment: Optional[DeploymentType],
        direction: Direction
    ) -> List[ArtifactFormat]:
        """Formats with a registered strategy, in ArtifactFormat order."""
        return [
            artifact_format for artifact_format in ArtifactFormat
            if (deployment, direction, artifact_format) in cls._strategies
        ]


def register_strategy(
    deployment: Optional[DeploymentType],
    direction: Direction,
    artifact_format: ArtifactFormat
):
    """
    Decorator to register a strategy class with the factory.
    
    Stack the decorator to register one class under several keys.
    """
    def decorator(cls: Type) -> Type:
        StrategyFactory.register_strategy(deployment, direction, artifact_format, cls)
        return cls
    return decorator
