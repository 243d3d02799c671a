"""
Run Support Assistant - Interactive terminal chat
"""
import argparse
import logging
import sys

from dotenv import load_dotenv
load_dotenv()

from config.settings import get_settings
from support_rag import NotFoundError, ValidationError, create_agent


def main() -> int:
    parser = argparse.ArgumentParser(description="Chat with the support assistant")
    parser.add_argument("--tenant", required=True, help="Tenant id to answer for")
    parser.add_argument("--faq-file", help="Plain-text file of 'Q: ...' / 'A: ...' pairs to load first")
    parser.add_argument("--document", action="append", default=[], help="File to ingest (repeatable)")
    parser.add_argument("--url", action="append", default=[], help="Web page to ingest (repeatable)")
    parser.add_argument("--no-stream", action="store_true", help="Print whole answers instead of streaming")
    args = parser.parse_args()

    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    print("=" * 60)
    print("  Support Assistant - Starting...")
    print("=" * 60)

    agent = create_agent()

    if args.faq_file:
        items = load_faq_file(args.faq_file)
        agent.create_faqs_batch(args.tenant, items)
        print(f"Loaded {len(items)} FAQs")

    pending = []
    for path in args.document:
        with open(path, "rb") as f:
            data = f.read()
        extension = path.rsplit(".", 1)[-1].upper() if "." in path else "TXT"
        pending.append(agent.upload_document(args.tenant, data, path, path, extension))
    for url in args.url:
        pending.append(agent.ingest_url(args.tenant, url, url))

    for document in pending:
        if document["status"] == "PENDING":
            document = agent.wait_for_document(args.tenant, document["id"], timeout=300)
        print(f"{document['title']}: {document['status']} ({document['chunk_count']} chunks)")

    print("\nType a question, 'history' to show this session, or 'quit' to exit.\n")

    session_id = None
    try:
        while True:
            try:
                question = input("You: ").strip()
            except EOFError:
                break

            if question.lower() in ("quit", "exit"):
                break
            if question.lower() == "history":
                if session_id is None:
                    print("No conversation yet.")
                    continue
                try:
                    for message in agent.get_history(args.tenant, session_id):
                        print(f"  [{message['role']}] {message['content']}")
                except NotFoundError as e:
                    print(e)
                continue

            try:
                if args.no_stream:
                    result = agent.chat(args.tenant, question, session_id=session_id)
                    session_id = result["session_id"]
                    print(f"Assistant: {result['answer']}")
                    print_sources(result)
                else:
                    session_id = stream_answer(agent, args.tenant, question, session_id)
            except ValidationError as e:
                print(f"Invalid question: {e}")
    finally:
        agent.shutdown()

    return 0


def stream_answer(agent, tenant_id, question, session_id):
    print("Assistant: ", end="", flush=True)
    for event in agent.chat_stream(tenant_id, question, session_id=session_id):
        if event.name in ("token", "message"):
            print(event.data, end="", flush=True)
        elif event.name == "metadata":
            print()
            session_id = event.data["session_id"]
            print_sources(event.data)
        elif event.name == "error":
            print(f"\n{event.data}")
    return session_id


def print_sources(result):
    if result.get("handoff_triggered"):
        print("  (handed off to a team member)")
    for source in result.get("sources", []):
        print(f"  - [{source['type']}] {source['title']}")


def load_faq_file(path):
    """Parse 'Q: question' / 'A: answer' blocks separated by blank lines."""
    items = []
    question = None
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line.startswith("Q:"):
                question = line[2:].strip()
            elif line.startswith("A:") and question:
                items.append({"question": question, "answer": line[2:].strip()})
                question = None
    return items


if __name__ == "__main__":
    sys.exit(main())
