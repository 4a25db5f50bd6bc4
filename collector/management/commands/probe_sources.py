"""
Management command to probe source health.

Usage:
    python manage.py probe_sources
    python manage.py probe_sources --source source-a --source source-b
    python manage.py probe_sources --include-inactive
"""

from django.core.management.base import BaseCommand, CommandError

from collector.models import VideoSource
from collector.services import source_registry


class Command(BaseCommand):
    help = 'Probe video sources and record their health'

    def add_arguments(self, parser):
        parser.add_argument(
            '--source',
            action='append',
            dest='sources',
            default=[],
            help='Source name to probe (repeatable, default: all active sources)'
        )
        parser.add_argument(
            '--include-inactive',
            action='store_true',
            help='Also probe inactive sources'
        )

    def handle(self, *args, **options):
        names = options['sources']

        if not names:
            summary = source_registry.probe_all_sources(include_inactive=options['include_inactive'])
            for name, result in sorted(summary['sources'].items()):
                self._write_row(name, result['status'], result['latency_ms'], result['consecutive_failures'])
            self.stdout.write(f"Probed {summary['total']} sources: {summary['statuses']}")
            return

        sources = list(VideoSource.objects.filter(name__in=names))
        missing = set(names) - {source.name for source in sources}
        if missing:
            raise CommandError(f"Unknown sources: {', '.join(sorted(missing))}")

        for source in sources:
            health = source_registry.probe_source(source)
            self._write_row(source.name, health.status, health.avg_response_time_ms, health.consecutive_failures)

    def _write_row(self, name, status, latency_ms, failures):
        line = f"  {name}: {status} ({latency_ms}ms, {failures} consecutive failures)"
        if status in ('healthy', 'slow'):
            self.stdout.write(self.style.SUCCESS(line))
        else:
            self.stdout.write(self.style.WARNING(line))
