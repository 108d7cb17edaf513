"""
Unit tests for the equipment join index and document mapping.
"""
from inspection_kpi.database import equipment_from_document, record_from_document
from inspection_kpi.models import Equipment, UNKNOWN_SITE
from inspection_kpi.services.equipment_index import EquipmentIndex, asset_key
from inspection_kpi.services.reducer import family_aliases


def _equipment(equipment_type, equipment_id, site=UNKNOWN_SITE, bu='th'):
    return Equipment(business_unit=bu, equipment_type=equipment_type, equipment_id=equipment_id, site=site)


def _record(equipment_type, equipment_id, bu='th', site=None):
    doc = {'bu': bu, 'type': equipment_type, 'id': equipment_id, 'timestamp': '2024-03-15T08:00:00Z'}
    if site:
        doc['site'] = site
    return record_from_document(doc)


class TestAssetKey:

    def test_type_is_lower_cased(self):
        assert asset_key('th', 'Forklift', 'FL-01') == 'th|forklift|FL-01'


class TestEquipmentIndex:
    """Tests for site lookup and bucket totals."""

    def test_site_comes_from_registry(self):
        index = EquipmentIndex([_equipment('forklift', 'FL-01', 'A')])
        record = _record('forklift', 'FL-01', site='B')
        assert index.contains(record) is True
        assert index.site_for(record) == 'A'

    def test_unregistered_asset_is_unknown(self):
        index = EquipmentIndex([_equipment('forklift', 'FL-01', 'A')])
        record = _record('forklift', 'GHOST')
        assert index.contains(record) is False
        assert index.site_for(record) == UNKNOWN_SITE

    def test_business_unit_is_part_of_the_key(self):
        index = EquipmentIndex([_equipment('forklift', 'FL-01', 'A', bu='vn')])
        assert index.contains(_record('forklift', 'FL-01', bu='th')) is False

    def test_first_registration_wins(self):
        index = EquipmentIndex([
            _equipment('forklift', 'FL-01', 'A'),
            _equipment('forklift', 'FL-01', 'B'),
        ])
        assert [e.site for e in index.equipment()] == ['A']
        assert index.site_for(_record('forklift', 'FL-01')) == 'A'
        assert index.bucket_totals() == {('forklift', 'A'): 1}

    def test_bucket_totals(self):
        index = EquipmentIndex([
            _equipment('forklift', 'FL-01', 'A'),
            _equipment('forklift', 'FL-02', 'A'),
            _equipment('forklift', 'FL-03', 'B'),
            _equipment('car', 'CAR-01'),
        ])
        assert index.bucket_totals() == {
            ('forklift', 'A'): 2,
            ('forklift', 'B'): 1,
            ('car', UNKNOWN_SITE): 1,
        }

    def test_mixer_family_collapses_to_one_type(self):
        aliases = family_aliases(['mixer', 'mixertsm', 'mixertrainer', 'mixerweek'])
        index = EquipmentIndex([_equipment('mixer', 'MX-01', 'A')], aliases)
        record = _record('mixerweek', 'MX-01')
        assert index.canonical_type('MixerTSM') == 'mixer'
        assert index.contains(record) is True
        assert index.site_for(record) == 'A'


class TestDocumentMapping:
    """Tests for turning raw documents into typed values."""

    def test_percent_encoded_ids_are_decoded(self):
        equipment = equipment_from_document({
            'bu': 'th', 'type': 'Forklift', 'id': '%E0%B8%A3%E0%B8%96-01', 'site': 'A',
        })
        assert equipment.equipment_id == 'รถ-01'
        assert equipment.equipment_type == 'forklift'

        record = _record('forklift', '%E0%B8%A3%E0%B8%96-01')
        assert EquipmentIndex([equipment]).contains(record) is True

    def test_registry_status_is_not_mapped(self):
        equipment = equipment_from_document({'bu': 'th', 'type': 'car', 'id': 'CAR-01', 'status': 'retired'})
        assert set(equipment.model_dump()) == {'business_unit', 'equipment_type', 'equipment_id', 'site', 'owner'}

    def test_missing_site_is_unknown(self):
        equipment = equipment_from_document({'bu': 'th', 'type': 'car', 'id': 'CAR-01'})
        assert equipment.site == UNKNOWN_SITE

    def test_record_falls_back_to_created_at(self):
        record = record_from_document({
            'bu': 'th', 'type': 'car', 'id': 'CAR-01', 'createdAt': '2024-03-15T08:00:00Z',
            'images': 'a.jpg', 'lights': 'fail',
        }, doc_id='abc')
        assert record.timestamp is not None
        assert record.images == ['a.jpg']
        assert record.doc_id == 'abc'
        assert list(record.answers) == ['lights']

    def test_unparsable_timestamp_kept_as_none(self):
        record = record_from_document({'bu': 'th', 'type': 'car', 'id': 'CAR-01', 'timestamp': 'soon'})
        assert record.timestamp is None
