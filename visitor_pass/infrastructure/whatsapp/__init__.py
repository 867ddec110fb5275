from .client import EvolutionAPIClient, ChoiceOption, evolution_client

__all__ = ["EvolutionAPIClient", "ChoiceOption", "evolution_client"]
