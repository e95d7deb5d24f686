"""
examples/agent_a.py — Simulated "Initiator" Agent

Agent A:
1. Creates a room and prints its api_key for Agent B
2. Joins as "AgentA" and opens a task for Agent B
3. Sends an opening question directly to Agent B
4. Polls for replies with a since_id cursor, marking them read, and answers back
5. After N rounds, marks the task done and stops

Usage:
    python -m examples.agent_a --rounds 3

Run this AFTER starting the server:
    agentmesh
"""
import argparse
import asyncio

from agentmesh.client import MeshClient, DEFAULT_BASE_URL

MY_NAME = "AgentA"
PEER = "AgentB"

RESPONSES = [
    "Interesting point. Could you elaborate on how that applies to high-throughput scenarios?",
    "That makes sense. What about error handling in async code?",
    "Good summary. How do you recommend structuring tests for async code?",
    "Agreed. I think we have covered the core principles.",
]


async def main(base_url: str, topic: str, rounds: int):
    async with MeshClient(base_url=base_url) as mesh:

        # 1. Room
        room = await mesh.create_room(f"Discussion: {topic}")
        print(f"[AgentA] Created room '{room['name']}'")
        print(f"[AgentA] Start Agent B with:  python -m examples.agent_b --api-key {room['api_key']}")

        # 2. Join and hand out a task
        await mesh.join(MY_NAME)
        task_id = await mesh.create_task(f"Answer questions about {topic}", created_by=MY_NAME, assigned_to=PEER)
        print(f"[AgentA] Opened task #{task_id} for {PEER}")

        # 3. Opening question
        opening = f"Hello! Let's discuss: '{topic}'. What are the most important considerations to start with?"
        await mesh.send(MY_NAME, opening, to=PEER)
        print(f"[AgentA] → {opening}")

        # 4. Reply loop
        cursor = 0
        for i in range(rounds):
            print(f"[AgentA] Waiting for {PEER} reply (after id={cursor})…")
            while True:
                new, cursor = await mesh.poll(MY_NAME, since_id=cursor)
                replies = [m for m in new if m["from_agent"] != MY_NAME]
                if replies:
                    for m in replies:
                        print(f"[AgentB] ← {m['content']}")
                    await mesh.mark_read(MY_NAME, cursor)
                    break
                await asyncio.sleep(1)

            if i < rounds - 1:
                reply = RESPONSES[i % len(RESPONSES)]
                await mesh.send(MY_NAME, reply, to=PEER)
                print(f"[AgentA] → {reply}")

        # 5. Wrap up
        await mesh.send(MY_NAME, "Thanks, that's all I needed.", type="done")
        task = await mesh.update_task(task_id, status="done")
        print(f"[AgentA] Task #{task['id']} is {task['status']}. Done.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", default=DEFAULT_BASE_URL, type=str)
    parser.add_argument("--topic", default="Best practices for async Python", type=str)
    parser.add_argument("--rounds", default=3, type=int)
    args = parser.parse_args()
    asyncio.run(main(args.url, args.topic, args.rounds))
