# LangGraph workflows
from app.workflows.generation_agent import run_generation, submit_generation, wait_for_generation

__all__ = ["submit_generation", "run_generation", "wait_for_generation"]
