from pitchperfect.models.base import Base
from pitchperfect.models.presentation import Presentation
from pitchperfect.models.agent import Agent

__all__ = ["Base", "Presentation", "Agent"]
