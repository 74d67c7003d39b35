"""Deep Search

Simple CLI for running one research topic in-process.
"""

import argparse
import asyncio
from uuid import uuid4

from deepsearch.agents.orchestrator import ResearchOrchestrator
from deepsearch.client.reconstruct import reconstruct
from deepsearch.services.memory_store import InMemoryResearchStore, ResearchStore


def _store_for(backend: str) -> ResearchStore:
    if backend == "memory":
        return InMemoryResearchStore()
    from deepsearch.services.supabase import SupabaseResearchStore

    return SupabaseResearchStore()


async def run_research(topic: str, depth: str = "basic", backend: str = "memory", model: str | None = None):
    """Run research on the given topic."""
    print(f"Research topic: {topic}")
    print("-" * 50)

    store = _store_for(backend)
    orchestrator = ResearchOrchestrator(model=model, session_id=str(uuid4()), depth=depth, store=store)

    async for event in orchestrator.run(topic):
        event_type = event.event.value
        data = event.data

        if event_type == "research_plan":
            plan = data.get("plan", {})
            print(f"\n[*] Research Plan ({data.get('totalSteps')} steps):")
            for i, search in enumerate(plan.get("searches", []), 1):
                print(f"  {i}. [p{search.get('priority')}] {search.get('query', '')[:80]}")
            for analysis in plan.get("analyses", []):
                print(f"     Analysis: {analysis.get('type')}")

        elif event_type == "step_start":
            print(f"\n[~] {data.get('title')}: {data.get('description')}")

        elif event_type == "step_complete":
            marker = "!" if data.get("status") == "error" else "+"
            print(f"  [{marker}] {data.get('description')}")

        elif event_type == "progress":
            print(f"  [{data.get('progress')}%]")

        elif event_type == "report_chunk":
            print(".", end="", flush=True)

        elif event_type == "report_complete":
            print(f"\n\n[*] Research Complete!")
            print(f"   Sources: {data.get('citationCount')}")
            print(f"\n{'='*50}")
            print("REPORT:")
            print(f"{'='*50}")
            print(data.get("fullReport", ""))

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')}")

    if orchestrator.message_id:
        record = await store.get_message(orchestrator.message_id)
        state = reconstruct(record) if record else None
        if state is not None:
            print(f"\n[*] Stored snapshot: phase={state.phase.value} progress={state.progress}% steps={len(state.steps)}")


def main():
    parser = argparse.ArgumentParser(description="Deep Search research tool")
    parser.add_argument("--topic", "-t", required=True, help="Research topic")
    parser.add_argument("--depth", choices=["basic", "advanced"], default="basic", help="Search depth")
    parser.add_argument("--store", choices=["memory", "supabase"], default="memory", help="Where to persist the run")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")

    args = parser.parse_args()

    asyncio.run(run_research(args.topic, args.depth, args.store, args.model))


if __name__ == "__main__":
    main()
