"""
Tests for the example protocol.
"""

import asyncio

from interview_core.examples import PERSON, build_example_protocol
from interview_core.navigation import NavigationController
from interview_core.selectors import get_current_stage, get_sorted_nodes_for_prompt
from interview_core.session import SessionStore


class TestExampleProtocol:
    """Walking the example interview."""

    def test_stage_order(self):
        """Should lay out the stages in interview order."""
        protocol = build_example_protocol()
        assert [s.id for s in protocol.navigable_stages] == [
            "intro",
            "name_generator",
            "alter_form",
            "sociogram",
            "closeness_bin",
            "finish",
        ]

    def test_empty_network_skips_to_finish(self):
        """Should skip the person stages when nobody was named."""
        store = SessionStore(build_example_protocol())
        sid = store.add_session()
        exits = []
        controller = NavigationController(store, sid, on_exit_requested=exits.append)
        store.update_stage(sid, 1)
        store.update_prompt(sid, 1)
        asyncio.run(controller.move_forward())
        assert exits == [5]

    def test_walk_with_people(self):
        """Should visit the person stages once someone is named."""
        protocol = build_example_protocol()
        store = SessionStore(protocol)
        sid = store.add_session()
        controller = NavigationController(store, sid, on_exit_requested=lambda target: controller.exit_complete())

        asyncio.run(controller.move_forward())
        assert get_current_stage(protocol, store.get_session(sid)).id == "name_generator"
        store.add_node(sid, {"type": PERSON}, {"name": "Ana", "close_friend": True})
        asyncio.run(controller.move_forward())
        store.add_node(sid, {"type": PERSON}, {"name": "Bo", "age": 44, "colleague": True})
        store.add_node(sid, {"type": PERSON}, {"name": "Cy", "age": 52, "colleague": True})

        names = [n.attributes["name"] for n in get_sorted_nodes_for_prompt(protocol, store.get_session(sid))]
        assert names == ["Cy", "Bo"]

        asyncio.run(controller.move_forward())
        assert get_current_stage(protocol, store.get_session(sid)).id == "alter_form"
