"""
examples/agent_b.py — Simulated "Responder" Agent

Agent B:
1. Joins the room identified by --api-key
2. Polls for messages addressed to it (direct or broadcast)
3. When a new message arrives, waits a short "thinking" delay, then replies
4. Stops when the initiator broadcasts a "done" message

Usage:
    python -m examples.agent_b --api-key amesh_...

Run this AFTER starting the server AND agent_a:
    agentmesh                   # terminal 1
    python -m examples.agent_a  # terminal 2
    python -m examples.agent_b --api-key <key printed by agent_a>  # terminal 3
"""
import argparse
import asyncio
import random

from agentmesh.client import MeshClient, DEFAULT_BASE_URL

MY_NAME = "AgentB"

# Pre-canned expert replies (no LLM needed for the demo)
EXPERT_REPLIES = [
    (
        "The most important consideration is separating I/O-bound vs CPU-bound work. "
        "For I/O-bound tasks, `asyncio` is ideal. For CPU-bound, use a process pool."
    ),
    (
        "Context managers (`async with`) are usually cleaner for error handling. "
        "They release resources even on exceptions."
    ),
    (
        "Use `pytest-asyncio` with `@pytest.mark.asyncio` and keep tests deterministic "
        "by avoiding real sleeps."
    ),
    "Always set a timeout on network calls. Silent hangs are the hardest async bugs to diagnose.",
]


async def main(base_url: str, api_key: str):
    async with MeshClient(base_url=base_url, api_key=api_key) as mesh:
        await mesh.join(MY_NAME)
        mine = await mesh.tasks(assigned_to=MY_NAME)
        print(f"[AgentB] Joined. {len(mine)} task(s) assigned to me. Polling… (Ctrl+C to stop)")

        cursor = 0
        reply_index = 0
        while True:
            new, cursor = await mesh.poll(MY_NAME, since_id=cursor)
            for m in new:
                if m["from_agent"] == MY_NAME:
                    continue
                if m["type"] == "done":
                    await mesh.mark_read(MY_NAME, cursor)
                    print(f"[AgentB] {m['from_agent']} finished the discussion. Bye.")
                    return

                print(f"[AgentB] ← {m['from_agent']}: {m['content'][:80]}")

                # "Thinking" delay
                await asyncio.sleep(random.uniform(1.5, 3.0))

                reply = EXPERT_REPLIES[reply_index % len(EXPERT_REPLIES)]
                reply_index += 1
                await mesh.send(MY_NAME, reply, to=m["from_agent"])
                print(f"[AgentB] → {reply[:80]}")
            if new:
                await mesh.mark_read(MY_NAME, cursor)
            await asyncio.sleep(1)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", default=DEFAULT_BASE_URL, type=str)
    parser.add_argument("--api-key", required=True, type=str)
    args = parser.parse_args()
    asyncio.run(main(args.url, args.api_key))
