"""
Unit tests for round-robin ticket sources.
"""

import asyncio
import random

import pytest

from cloudcall.core.errors import InvalidConfiguration
from cloudcall.routing.rotation import RandomDraw, RotationPointer, make_round_robin


class TestRotationPointer:

    @pytest.mark.asyncio
    async def test_pointer_advances_per_team(self):
        pointer = RotationPointer()

        assert [await pointer.next_ticket("t1") for _ in range(3)] == [0, 1, 2]
        assert await pointer.next_ticket("t2") == 0
        assert pointer.position("t1") == 3

    @pytest.mark.asyncio
    async def test_concurrent_draws_never_collide(self):
        pointer = RotationPointer()

        tickets = await asyncio.gather(*(pointer.next_ticket("t1") for _ in range(50)))

        assert sorted(tickets) == list(range(50))


class TestRandomDraw:

    @pytest.mark.asyncio
    async def test_random_draw_is_seedable(self):
        a = RandomDraw(random.Random(7))
        b = RandomDraw(random.Random(7))

        assert [await a.next_ticket("t1") for _ in range(5)] == [await b.next_ticket("t1") for _ in range(5)]


def test_factory():
    assert isinstance(make_round_robin("rotation"), RotationPointer)
    assert isinstance(make_round_robin("random"), RandomDraw)
    with pytest.raises(InvalidConfiguration):
        make_round_robin("weighted")
