# Generated manually: default top-level categories

from django.db import migrations


DEFAULT_CATEGORIES = [
    ('Electronics', 'electronics', 'Electronic devices and accessories'),
    ('Home & Living', 'home-living', 'Home appliances and living essentials'),
    ('Services', 'services', 'Professional and personal services'),
    ('Fashion & Beauty', 'fashion-beauty', 'Clothing, accessories and beauty products'),
    ('Automotive', 'automotive', 'Vehicles, parts and repairs'),
    ('Other', 'other', 'Anything that does not fit elsewhere'),
]


def seed_categories(apps, schema_editor):
    Category = apps.get_model('needs', 'Category')
    for order, (name, slug, description) in enumerate(DEFAULT_CATEGORIES, start=1):
        Category.objects.get_or_create(
            slug=slug,
            defaults={'name': name, 'description': description, 'sort_order': order},
        )


def remove_categories(apps, schema_editor):
    Category = apps.get_model('needs', 'Category')
    Category.objects.filter(
        slug__in=[slug for _, slug, _ in DEFAULT_CATEGORIES],
        needs__isnull=True,
    ).delete()


class Migration(migrations.Migration):

    dependencies = [
        ('needs', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(seed_categories, remove_categories),
    ]
