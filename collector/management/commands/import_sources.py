"""
Management command to import video sources from a JSON file.

Usage:
    python manage.py import_sources /path/to/sources.json

The file holds a list of objects:
    [{"name": "source-a", "endpoint_url": "https://a.example/api.php/provide/vod/",
      "display_name": "Source A", "weight": 80, "response_format": "auto",
      "is_low_priority": false, "is_active": true}]
"""

import json

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.db import DatabaseError

from collector.models import ResponseFormat, VideoSource

SOURCE_FIELDS = (
    'display_name',
    'endpoint_url',
    'response_format',
    'weight',
    'is_active',
    'is_low_priority',
    'notes',
)


def source_record(source_data):
    """Pick the known fields from one JSON entry and validate them."""
    name = (source_data.get('name') or '').strip()
    endpoint_url = (source_data.get('endpoint_url') or source_data.get('url') or '').strip()
    if not name or not endpoint_url:
        raise ValueError('name and endpoint_url are required')

    record = {key: source_data[key] for key in SOURCE_FIELDS if key in source_data}
    record['endpoint_url'] = endpoint_url
    record.setdefault('display_name', name)

    response_format = record.get('response_format', ResponseFormat.AUTO)
    if response_format not in ResponseFormat.values:
        raise ValueError(f'unknown response_format {response_format!r}')

    weight = int(record.get('weight', 50))
    if not 0 <= weight <= 100:
        raise ValueError('weight must be between 0 and 100')
    record['weight'] = weight
    return name, record


class Command(BaseCommand):
    help = 'Import video sources from JSON file'

    def add_arguments(self, parser):
        parser.add_argument('json_file', type=str, help='Path to JSON file with sources')
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be imported without saving'
        )
        parser.add_argument(
            '--update',
            action='store_true',
            help='Update sources that already exist instead of skipping them'
        )

    def handle(self, *args, **options):
        json_file = options['json_file']
        dry_run = options['dry_run']
        update = options['update']

        try:
            with open(json_file, 'r', encoding='utf-8') as f:
                sources = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f'Cannot read {json_file}: {e}')

        if not isinstance(sources, list):
            raise CommandError('Expected a JSON list of sources')

        self.stdout.write(f"Found {len(sources)} sources in {json_file}")

        created = 0
        updated = 0
        skipped = 0
        errors = 0

        for source_data in sources:
            try:
                name, record = source_record(source_data)
            except (AttributeError, TypeError, ValueError) as e:
                self.stdout.write(self.style.ERROR(f"  Invalid entry {source_data!r}: {e}"))
                errors += 1
                continue

            existing = VideoSource.objects.filter(name=name).first()
            if existing is not None and not update:
                self.stdout.write(f"  Skipping (exists): {name}")
                skipped += 1
                continue

            if dry_run:
                verb = 'update' if existing else 'create'
                self.stdout.write(f"  Would {verb}: {name} ({record['endpoint_url']}, weight {record['weight']})")
                continue

            try:
                if existing is not None:
                    for key, value in record.items():
                        setattr(existing, key, value)
                    existing.full_clean()
                    existing.save()
                    self.stdout.write(self.style.SUCCESS(f"  Updated: {name}"))
                    updated += 1
                else:
                    source = VideoSource(name=name, **record)
                    source.full_clean()
                    source.save()
                    self.stdout.write(self.style.SUCCESS(f"  Created: {name}"))
                    created += 1
            except (ValidationError, DatabaseError) as e:
                self.stdout.write(self.style.ERROR(f"  Error saving {name}: {e}"))
                errors += 1

        # Summary
        self.stdout.write("")
        self.stdout.write("=" * 60)
        self.stdout.write("Import complete!")
        self.stdout.write(f"  Created: {created}")
        self.stdout.write(f"  Updated: {updated}")
        self.stdout.write(f"  Skipped: {skipped}")
        self.stdout.write(f"  Errors: {errors}")
