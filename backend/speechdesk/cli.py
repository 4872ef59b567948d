"""Command-line entry point: process one transcription in-process or queue it.

    speechdesk-process 42            # run now, print the outcome
    speechdesk-process 42 --queue    # hand it to the Celery worker
"""

import argparse
import json
import logging
import sys

from speechdesk.db import records
from speechdesk.db.database import SessionLocal, create_tables
from speechdesk.errors import TranscriptionError
from speechdesk.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speechdesk-process",
        description="Process a transcription record.",
    )
    parser.add_argument("transcription_id", type=int, help="id of the record to process")
    parser.add_argument(
        "--queue",
        action="store_true",
        help="enqueue on the Celery worker instead of processing in this process",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    create_tables()

    # Imported late so --help works without a broker configured
    from speechdesk.services.processor import TranscriptionProcessor
    from speechdesk.workers.tasks import enqueue_transcription

    db = SessionLocal()
    try:
        transcription = records.get_transcription(db, args.transcription_id)
        if transcription is None:
            print(f"Transcription {args.transcription_id} not found", file=sys.stderr)
            return 2

        if args.queue:
            result = enqueue_transcription(transcription)
            print(json.dumps({"transcription_id": transcription.id, "task_id": result.id}))
            return 0

        try:
            TranscriptionProcessor(db).process(transcription)
        except TranscriptionError as exc:
            print(f"Processing failed: {exc}", file=sys.stderr)
            return 1

        print(json.dumps({
            "transcription_id": transcription.id,
            "status": transcription.status_str,
            "word_count": transcription.word_count,
            "char_count": transcription.char_count,
            "output_audio_path": transcription.output_audio_path,
        }))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
