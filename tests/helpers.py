import random

from minefield.game_engine import HIDDEN, Session, generate

CORNERS_5X5 = [(0, 4), (4, 0), (4, 4)]


class ScriptedRandom:
    """Feeds generate() a fixed sequence of coordinates."""

    def __init__(self, coords):
        self.values = [v for rc in coords for v in rc]

    def randrange(self, n):
        return self.values.pop(0)


def fixed_session(rows, cols, mines, rng=None) -> Session:
    layout = generate(rows, cols, len(mines), ScriptedRandom(mines))
    overlay = [[HIDDEN] * cols for _ in range(rows)]
    return Session(rows, cols, len(mines), layout, overlay, len(mines), rng or random.Random(0))
