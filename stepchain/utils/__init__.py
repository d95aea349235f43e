from .ids import IdGenerator, random_id_generator, sequential_id_generator

__all__ = ["IdGenerator", "random_id_generator", "sequential_id_generator"]
