"""
Transfer templates: saved routes with default lines.
"""

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('quartermaster', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='TransferTemplate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('tenant_id', models.CharField(db_index=True, max_length=64, verbose_name='Tenant')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('description', models.TextField(blank=True, default='')),
                ('is_archived', models.BooleanField(default=False, verbose_name='Archived')),
                ('archived_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('archived_by', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+',
                    to=settings.AUTH_USER_MODEL, verbose_name='Archived by',
                )),
                ('created_by', models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+',
                    to=settings.AUTH_USER_MODEL, verbose_name='Created by',
                )),
                ('destination_branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='+',
                    to='quartermaster.branch', verbose_name='Destination branch',
                )),
                ('source_branch', models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name='+',
                    to='quartermaster.branch', verbose_name='Source branch',
                )),
            ],
            options={
                'verbose_name': 'Transfer template',
                'verbose_name_plural': 'Transfer templates',
                'ordering': ['name', '-created_at'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('source_branch', models.F('destination_branch')), _negated=True),
                        name='qm_template_distinct_branches',
                    ),
                ],
                'indexes': [
                    models.Index(fields=['tenant_id', 'is_archived', 'name'], name='qm_template_list_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TransferTemplateItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('default_qty', models.PositiveIntegerField(verbose_name='Default quantity')),
                ('product', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='+',
                    to='quartermaster.product', verbose_name='Product',
                )),
                ('template', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name='items',
                    to='quartermaster.transfertemplate', verbose_name='Template',
                )),
            ],
            options={
                'verbose_name': 'Template item',
                'verbose_name_plural': 'Template items',
                'ordering': ['id'],
                'constraints': [
                    models.UniqueConstraint(fields=('template', 'product'), name='qm_template_item_unique_product'),
                ],
            },
        ),
    ]
