import asyncio
import json

import jwt
import pytest

from smart_parking.events import EventBus
from smart_parking.security import generate_jwt, hash_password, verify_jwt, verify_password


class TestSecurity:
    def test_password_hash_round_trip(self):
        hashed = hash_password("admin123")

        assert hashed != "admin123"
        assert verify_password("admin123", hashed)
        assert not verify_password("admin124", hashed)

    def test_jwt_carries_claims(self):
        payload = verify_jwt(generate_jwt({"sub": "admin", "role": "ADMIN"}))

        assert payload["sub"] == "admin"
        assert payload["role"] == "ADMIN"
        assert "exp" in payload

    def test_expired_jwt(self):
        with pytest.raises(jwt.ExpiredSignatureError):
            verify_jwt(generate_jwt({"sub": "admin"}, expires_in_seconds=-5))


class TestEventBus:
    def test_publish_reaches_subscribers(self):
        async def scenario():
            bus = EventBus()
            first, second = bus.subscribe(), bus.subscribe()
            await bus.publish_event("occupancy", action="park", slotNumber=6, floorNumber=1)
            return [json.loads(q.get_nowait()) for q in (first, second)]

        messages = asyncio.run(scenario())

        assert messages[0] == {"type": "occupancy", "action": "park", "slotNumber": 6, "floorNumber": 1}
        assert messages[0] == messages[1]

    def test_unsubscribed_queue_gets_nothing(self):
        async def scenario():
            bus = EventBus()
            queue = bus.subscribe()
            bus.unsubscribe(queue)
            await bus.publish("hello")
            return bus.subscriber_count, queue.empty()

        assert asyncio.run(scenario()) == (0, True)
