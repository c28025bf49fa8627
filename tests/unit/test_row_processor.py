"""
Unit tests for RowProcessor: cell extraction, multiplicity fan-out, row
conditions, reconciliation actions and associations.
"""

import pytest

from clinical_etl.exceptions import ConfigurationError, InputError
from clinical_etl.mapping.attribute_builder import AttributeBuilder
from clinical_etl.mapping.loader_plan import LoaderPlanCompiler
from clinical_etl.models import ColumnDescriptor, ObjectMapEntry, RecordKind, LoadResult
from clinical_etl.processing.row_processor import RowProcessor


def build_processor(store, provenance, object_map, column_map, subject=None, markers=()):
    compiler = LoaderPlanCompiler(store)
    return RowProcessor(
        plan=compiler.compile(object_map, column_map),
        conditions=compiler.compile_conditions(column_map),
        store=store,
        builder=AttributeBuilder(provenance),
        provenance=provenance,
        result=LoadResult(),
        subject=subject,
        empty_cell_markers=markers,
    )


SUBJECT_IGNORE = ObjectMapEntry(kind='subject', existing_records={'action': 'ignore', 'find_by': ['subject_code']})


class TestCellValues:

    def test_empty_markers_and_blanks(self, store, provenance):
        processor = build_processor(store, provenance, [SUBJECT_IGNORE],
                                    [ColumnDescriptor(target='subject', field='subject_code')], markers=('.', 'NA'))
        row = ['.', 'NA', '  ', '', 0, 'value']
        assert [processor.cell_value(row, i) for i in range(6)] == [None, None, None, None, 0, 'value']

    def test_index_beyond_row_is_none(self, store, provenance):
        processor = build_processor(store, provenance, [SUBJECT_IGNORE],
                                    [ColumnDescriptor(target='subject', field='subject_code')])
        assert processor.cell_value(['a'], 5) is None


class TestMultiplicity:

    @pytest.fixture
    def irb_processor(self, store, provenance):
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='irb', field='irb_number', multiple=True),
            ColumnDescriptor(target='irb', field='title', multiple=True),
        ]
        return build_processor(store, provenance, [SUBJECT_IGNORE, ObjectMapEntry(kind='irb')], column_map)

    def test_fan_out_pairs_values_positionally(self, irb_processor):
        entry = irb_processor.plan[1]
        instances = irb_processor.split_instances(entry, {'irb_number': 'a;b;c', 'title': 'A; B ;C'}, {})
        assert instances == [
            ({'irb_number': 'a', 'title': 'A'}, {}),
            ({'irb_number': 'b', 'title': 'B'}, {}),
            ({'irb_number': 'c', 'title': 'C'}, {}),
        ]

    def test_mismatch_raises(self, irb_processor):
        entry = irb_processor.plan[1]
        with pytest.raises(InputError, match="Multiplicity mismatch"):
            irb_processor.split_instances(entry, {'irb_number': 'a;b', 'title': 'a;b;c'}, {})

    def test_single_values_give_one_instance(self, irb_processor):
        entry = irb_processor.plan[1]
        instances = irb_processor.split_instances(entry, {'irb_number': '2001P001', 'title': 'Sleep study'}, {})
        assert instances == [({'irb_number': '2001P001', 'title': 'Sleep study'}, {})]

    def test_numeric_cells_are_single_values(self, irb_processor):
        entry = irb_processor.plan[1]
        instances = irb_processor.split_instances(entry, {'irb_number': 12.0, 'title': 'T'}, {})
        assert instances == [({'irb_number': 12.0, 'title': 'T'}, {})]

    def test_missing_values_give_no_instances(self, irb_processor):
        entry = irb_processor.plan[1]
        assert irb_processor.split_instances(entry, {'irb_number': None, 'title': None}, {}) == []

    def test_missing_value_against_present_value_is_mismatch(self, irb_processor):
        entry = irb_processor.plan[1]
        with pytest.raises(InputError):
            irb_processor.split_instances(entry, {'irb_number': 'a', 'title': None}, {})

    def test_non_multiple_entry_passes_values_through(self, irb_processor):
        entry = irb_processor.plan[0]
        assert irb_processor.split_instances(entry, {'subject_code': 'a;b'}, {}) == [({'subject_code': 'a;b'}, {})]

    def test_row_creates_one_irb_per_part(self, irb_processor, store):
        irb_processor.process_row(2, ['S1', '100;200', 'First;Second'])

        irbs = store.records[RecordKind.IRB]
        assert [irb['irb_number'] for irb in irbs] == ['100', '200']
        subject_id = store.subjects[0]['id']
        assert {(RecordKind.IRB, irb['id'], subject_id) for irb in irbs} == store.memberships

    def test_mismatch_error_carries_row_context(self, irb_processor):
        with pytest.raises(InputError) as excinfo:
            irb_processor.process_row(7, ['S1', '100;200', 'Only one title;x;y'])
        assert excinfo.value.row_number == 7
        assert excinfo.value.entry == 'irb'
        assert 'row 7' in str(excinfo.value)


class TestRowFlow:

    def test_condition_skips_row(self, store, provenance):
        column_map = [ColumnDescriptor(target='subject', field='subject_code', conditions="field NOT LIKE 'TEST%'")]
        processor = build_processor(store, provenance, [SUBJECT_IGNORE], column_map)

        assert processor.process_row(2, ['TEST01']) is False
        assert processor.process_row(3, ['1234GX']) is True
        assert [s['subject_code'] for s in store.subjects] == ['1234GX']
        assert processor.result.rows_skipped == 1

    def test_condition_sees_empty_marker_as_empty(self, store, provenance):
        column_map = [ColumnDescriptor(target='subject', field='subject_code', conditions="field IS NOT EMPTY")]
        processor = build_processor(store, provenance, [SUBJECT_IGNORE], column_map, markers=('.',))
        assert processor.process_row(2, ['.']) is False

    def test_subject_not_derivable(self, store, provenance):
        processor = build_processor(store, provenance, [ObjectMapEntry(kind='study')],
                                    [ColumnDescriptor(target='study', field='official_name')])
        with pytest.raises(ConfigurationError, match="Subject not derivable"):
            processor.process_row(2, ['Sleep Study'])

    def test_all_none_instance_is_skipped(self, store, provenance):
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='study', field='official_name'),
        ]
        processor = build_processor(store, provenance, [SUBJECT_IGNORE, ObjectMapEntry(kind='study')], column_map)
        processor.process_row(2, ['S1', None])
        assert store.records[RecordKind.STUDY] == []
        assert store.memberships == set()

    def test_static_fields_override_columns(self, store, provenance):
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='study', field='official_name'),
        ]
        object_map = [SUBJECT_IGNORE, ObjectMapEntry(kind='study', static_fields={'official_name': 'Fixed'})]
        processor = build_processor(store, provenance, object_map, column_map)
        processor.process_row(2, ['S1', 'From file'])
        assert store.records[RecordKind.STUDY][0]['official_name'] == 'Fixed'

    def test_row_subject_is_touched_and_recorded(self, store, provenance):
        processor = build_processor(store, provenance, [SUBJECT_IGNORE],
                                    [ColumnDescriptor(target='subject', field='subject_code')])
        processor.process_row(2, ['S1'])
        processor.process_row(3, ['S1'])
        subject_id = store.subjects[0]['id']
        assert store.touched == [(RecordKind.SUBJECT, subject_id), (RecordKind.SUBJECT, subject_id)]
        assert processor.result.subject_codes == ['S1']


class TestReconciliation:

    def test_update_existing_record(self, store, provenance):
        existing = store.add_record(RecordKind.SUBJECT, subject_code='S1', sex='F')
        object_map = [ObjectMapEntry(kind='subject', existing_records={'action': 'update', 'find_by': ['subject_code']})]
        column_map = [ColumnDescriptor(target='subject', field='subject_code'),
                      ColumnDescriptor(target='subject', field='sex')]
        processor = build_processor(store, provenance, object_map, column_map)

        processor.process_row(2, ['S1', 'M'])

        assert store.subjects == [{'subject_code': 'S1', 'sex': 'M', 'id': existing['id']}]
        assert processor.result.records_updated == 1
        assert store.change_logs[-1]['provenance'] == provenance

    def test_ignore_existing_record(self, store, provenance):
        store.add_record(RecordKind.SUBJECT, subject_code='S1', sex='F')
        object_map = [ObjectMapEntry(kind='subject', existing_records={'action': 'ignore', 'find_by': ['subject_code']})]
        column_map = [ColumnDescriptor(target='subject', field='subject_code'),
                      ColumnDescriptor(target='subject', field='sex')]
        processor = build_processor(store, provenance, object_map, column_map)

        processor.process_row(2, ['S1', 'M'])

        assert store.subjects[0]['sex'] == 'F'
        assert processor.result.records_ignored == 1
        assert store.change_logs == []

    def test_failed_create_is_a_warning(self, store, provenance):
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='irb', field='title'),
        ]
        processor = build_processor(store, provenance, [SUBJECT_IGNORE, ObjectMapEntry(kind='irb')], column_map)

        processor.process_row(4, ['S1', 'IRB without a number'])

        assert store.records[RecordKind.IRB] == []
        assert len(processor.result.warnings) == 1
        warning = processor.result.warnings[0]
        assert (warning.row_number, warning.kind) == (4, 'irb')
        assert 'irb_number' in warning.message
        assert processor.result.subject_codes == ['S1']

    def test_researcher_full_name_lookup_and_role(self, store, provenance):
        researcher = store.add_record(RecordKind.RESEARCHER, first_name='Elizabeth', last_name='Klerman')
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='researcher', researcher_type='pi', role='primary', field='full_name'),
        ]
        object_map = [
            SUBJECT_IGNORE,
            ObjectMapEntry(kind='researcher', researcher_type='pi', role='primary',
                           existing_records={'action': 'ignore', 'find_by': ['full_name']}),
        ]
        processor = build_processor(store, provenance, object_map, column_map)

        processor.process_row(2, ['S1', 'Klerman, Elizabeth'])

        subject_id = store.subjects[0]['id']
        assert store.role_associations == {(subject_id, 'pi', 'primary'): researcher['id']}
        assert len(store.records[RecordKind.RESEARCHER]) == 1

    def test_new_researcher_created_with_split_name(self, store, provenance):
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='researcher', researcher_type='pl', field='full_name'),
        ]
        object_map = [SUBJECT_IGNORE, ObjectMapEntry(kind='researcher', researcher_type='pl')]
        processor = build_processor(store, provenance, object_map, column_map)

        processor.process_row(2, ['S1', 'Jeanne Duffy'])

        researcher = store.records[RecordKind.RESEARCHER][0]
        assert (researcher['first_name'], researcher['last_name']) == ('Jeanne', 'Duffy')
        assert 'full_name' not in researcher

    def test_event_without_subject_raises(self, store, provenance):
        column_map = [
            ColumnDescriptor(target='subject', field='subject_code'),
            ColumnDescriptor(target='event', event_name='x', field='labtime_decimal'),
        ]
        object_map = [SUBJECT_IGNORE, ObjectMapEntry(kind='event', event_name='x', static_fields={'labtime_year': 2020})]
        processor = build_processor(store, provenance, object_map, column_map)

        with pytest.raises(InputError, match="No subject"):
            processor.process_row(2, [None, '1.5'])
