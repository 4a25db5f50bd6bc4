"""
Management command to run a collection task.

Usage:
    python manage.py run_collection --type full
    python manage.py run_collection --type category --category 2 --page-end 10
    python manage.py run_collection --type source --source source-a --max-videos 200
    python manage.py run_collection --resume 6f1c0b9e-1d2a-4c55-9a43-1f0f2f1b9e11
    python manage.py run_collection --type incremental --async

Without --async the task runs in this process until it completes, pauses,
is cancelled or fails.
"""

from django.core.management.base import BaseCommand, CommandError

from collector.exceptions import CollectorError
from collector.models import TaskStatus, TaskType, VideoSource
from collector.services.task_engine import Dispatcher, TaskEngine


class InlineDispatcher(Dispatcher):
    """Queues dispatched task ids for this process instead of a worker."""

    def __init__(self):
        self.pending = []

    def dispatch(self, task_id) -> None:
        self.pending.append(task_id)


class Command(BaseCommand):
    help = "Create (or resume) a collection task and run it"

    def add_arguments(self, parser):
        parser.add_argument(
            "--type",
            dest="task_type",
            choices=TaskType.values,
            default=TaskType.FULL,
            help="Task type (default: full)",
        )
        parser.add_argument(
            "--source",
            action="append",
            dest="sources",
            default=[],
            help="Source name (repeatable)",
        )
        parser.add_argument(
            "--category",
            action="append",
            dest="categories",
            type=int,
            default=[],
            help="Canonical category id (repeatable)",
        )
        parser.add_argument("--page-start", type=int, help="First page")
        parser.add_argument("--page-end", type=int, help="Last page (-1 for all)")
        parser.add_argument("--max-videos", type=int, help="Stop after this many items")
        parser.add_argument("--hours", type=int, help="Only items updated in the last N hours")
        parser.add_argument(
            "--resume",
            metavar="TASK_ID",
            help="Resume a paused or failed task instead of creating one",
        )
        parser.add_argument(
            "--async",
            dest="run_async",
            action="store_true",
            help="Dispatch to a Celery worker instead of running here",
        )

    def build_config(self, options):
        config = {}
        if options["sources"]:
            sources = list(VideoSource.objects.filter(name__in=options["sources"]))
            missing = set(options["sources"]) - {source.name for source in sources}
            if missing:
                raise CommandError(f"Unknown sources: {', '.join(sorted(missing))}")
            config["source_ids"] = [str(source.id) for source in sources]
        if options["categories"]:
            config["category_ids"] = options["categories"]
        for key in ("page_start", "page_end", "max_videos", "hours"):
            if options[key] is not None:
                config[key] = options[key]
        return config

    def handle(self, *args, **options):
        dispatcher = None if options["run_async"] else InlineDispatcher()
        engine = TaskEngine(dispatcher=dispatcher)

        try:
            if options["resume"]:
                task = engine.resume_task(options["resume"])
                self.stdout.write(f"Resumed task {task.id} from page {task.progress['currentPage']}")
            else:
                task = engine.create_task(
                    options["task_type"], self.build_config(options), created_by="manage.py"
                )
                task = engine.start_task(task.id)
                self.stdout.write(f"Started {task.task_type} task {task.id}")
        except CollectorError as e:
            raise CommandError(str(e))

        if options["run_async"]:
            self.stdout.write(self.style.SUCCESS(f"Dispatched task {task.id} to a worker"))
            return

        result = None
        while dispatcher.pending:
            result = engine.execute(dispatcher.pending.pop(0))

        progress = result["progress"] if result else task.progress
        status = result["status"] if result else task.status

        self.stdout.write("")
        self.stdout.write("=" * 60)
        self.stdout.write(f"Task {task.id}: {status}")
        self.stdout.write(f"  Processed: {progress['processedCount']}")
        self.stdout.write(f"  New: {progress['newCount']}")
        self.stdout.write(f"  Updated: {progress['updateCount']}")
        self.stdout.write(f"  Skipped: {progress['skipCount']}")
        self.stdout.write(f"  Errors: {progress['errorCount']}")

        if status == TaskStatus.FAILED:
            raise CommandError(f"Task {task.id} failed")
