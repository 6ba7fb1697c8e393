#!/usr/bin/env python3
"""
Interview Demo: Protocol → Session → Navigation → Sorted projections

Shows the full workflow:
1. Build the example protocol and a session store
2. Walk the first stages with the navigation controller
3. Name some people on the name generator's two prompts
4. Show how skip logic opens the later stages
5. Print the sorted nodes for a prompt and the session snapshot
"""

import asyncio
import os

from interview_core.config import load_settings
from interview_core.examples import PERSON, build_example_protocol
from interview_core.logging_utils import configure_logging
from interview_core.navigation import NavigationController
from interview_core.selectors import get_current_prompt, get_node_label, get_sorted_nodes_for_prompt
from interview_core.serialization import session_to_yaml
from interview_core.session import SessionStore
from interview_core.sync import SessionSyncer


def print_position(controller: NavigationController) -> None:
    info = controller.get_navigation_info()
    stage = controller.current_stage
    print(
        f"   stage={info.current_step} ({stage.label if stage else '?'}) "
        f"prompt={info.prompt_index} progress={info.progress:.0f}%"
    )


async def walk(controller: NavigationController, store: SessionStore, session_id: str) -> None:
    # =========================================================================
    # STEP 2: Leave the information stage
    # =========================================================================
    print("\n2. NAVIGATING...")
    print_position(controller)
    await controller.move_forward()
    print(f"   exit requested, target={controller.pending_target}")
    controller.exit_complete()
    print_position(controller)

    # =========================================================================
    # STEP 3: Name people on both prompts
    # =========================================================================
    print("\n3. NAMING PEOPLE...")
    protocol = store.protocol
    for name, age in [("Zoë", 34), ("adam", 51), ("Émile", 27)]:
        prompt = get_current_prompt(protocol, store.get_session(session_id))
        store.add_node(session_id, {"type": PERSON}, {"name": name, "age": age, **prompt.additional_attributes})

    await controller.move_forward()
    print_position(controller)

    for name, age in [("Beatriz", 45), ("Chen", 45)]:
        prompt = get_current_prompt(protocol, store.get_session(session_id))
        store.add_node(session_id, {"type": PERSON}, {"name": name, "age": age, **prompt.additional_attributes})

    nodes = get_sorted_nodes_for_prompt(protocol, store.get_session(session_id))
    print("   colleagues, oldest first:")
    for node in nodes:
        print(f"      - {get_node_label(protocol, node)} ({node.attributes['age']})")

    # =========================================================================
    # STEP 4: Skip logic now shows the alter form
    # =========================================================================
    print("\n4. ADVANCING PAST THE NAME GENERATOR...")
    await controller.move_forward()
    controller.exit_complete()
    print_position(controller)


def main():
    settings = load_settings(os.environ.get("INTERVIEW_SETTINGS"))
    configure_logging(settings.log_level)

    print("=" * 80)
    print("INTERVIEW DEMO: Protocol → Session → Navigation")
    print("=" * 80)

    # =========================================================================
    # STEP 1: Protocol and session
    # =========================================================================
    print("\n1. BUILDING PROTOCOL...")
    protocol = build_example_protocol()
    store = SessionStore(protocol, validate_edge_endpoints=settings.validate_edge_endpoints)
    syncer = SessionSyncer.from_settings(store, settings)
    session_id = store.add_session(case_id="demo-case", protocol_id=protocol.name)
    print(f"   ✓ Protocol: {protocol.name}")
    print(f"   ✓ Navigable stages: {[stage.id for stage in protocol.navigable_stages]}")
    print(f"   ✓ Session: {session_id}")

    controller = NavigationController(store, session_id)
    asyncio.run(walk(controller, store, session_id))

    # =========================================================================
    # STEP 5: Snapshot
    # =========================================================================
    print("\n5. SESSION SNAPSHOT (YAML, first lines)...")
    for line in session_to_yaml(store.get_session(session_id)).splitlines()[:12]:
        print(f"   {line}")

    controller.close()
    if syncer is not None:
        syncer.flush(session_id)
        syncer.close()
    print("\n" + "=" * 80)


if __name__ == "__main__":
    main()
