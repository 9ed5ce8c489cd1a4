"""
Tests for the -Y output parser.
"""
import unittest

from .binder import bind
from .errors import DecodeError, FormatError, UnknownSection
from .output_parser import ParseSummary, collect_entities, parse_output
from .tokenizer import HeaderDescriptor, RawRecord, encode_header, encode_record, tokenize_line
from ..schema.columns import EntityType
from ..schema.models import (
    AvailabilityState, DiskState, GraceKind, QuotaKind,
)

DISK_HEADER = ("mmlsdisk::HEADER:version:reserved:reserved:nsdName:driverType:sectorSize:failureGroup:"
               "metadata:data:status:availability:diskID:storagePool:diskSizeKB:")
DISK_ROW = "mmlsdisk::0:1:::nsd1:nsd:512:1:Yes:Yes:ready:up:1:system:1048576:"

NSD_HEADER = "mmlsnsd:nsd:HEADER:version:reserved:reserved:fileSystem:diskName:volumeId:serverList:localDiskName:"

MMDF_OUTPUT = """\
mmdf:nsd:HEADER:version:reserved:reserved:nsdName:storagePool:diskSize:failureGroup:metadata:data:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:diskAvailableForAlloc:
mmdf:nsd:0:1:::nsd1:system:1048576:1:Yes:Yes:524288:50:1024:0:Yes:
mmdf:poolTotal:HEADER:version:reserved:reserved:poolName:poolSize:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:maxDiskSize:
mmdf:poolTotal:0:1:::system:1048576:262144:25:1024:0:2097152:
mmdf:metadata:HEADER:version:reserved:reserved:totalMetadata:
mmdf:metadata:0:1:::123:
mmdf:fsTotal:HEADER:version:reserved:reserved:fsSize:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:
mmdf:fsTotal:0:1:::1048576:262144:25:1024:0:
"""

QUOTA_HEADER = ("mmrepquota::HEADER:version:reserved:reserved:filesystemName:quotaType:id:name:blockUsage:"
                "blockQuota:blockLimit:blockInDoubt:blockGrace:filesUsage:filesQuota:filesLimit:filesInDoubt:"
                "filesGrace:remarks:quota:defQuota:fid:filesetname:")


def quota_row(kind='USR', name='alice', usage='2048', grace='6 days'):
    return f"mmrepquota::0:1:::fs1:{kind}:1000:{name}:{usage}:1024:4096:0:{grace}:10:0:0:0:none:i:on:off:0:root:"


def parse(text, filesystem=None):
    return list(parse_output(text, filesystem))


class TestTokenizer(unittest.TestCase):
    """Test cases for line tokenization."""

    def test_header_line(self):
        token = tokenize_line(DISK_HEADER, 1)
        self.assertIsInstance(token, HeaderDescriptor)
        self.assertEqual(token.tag, ('mmlsdisk', ''))
        self.assertEqual(token.columns[6], 'nsdName')
        self.assertEqual(token.index_of('storagePool'), 15)
        self.assertEqual(token.index_of('missing'), -1)

    def test_data_line_keeps_empty_fields(self):
        token = tokenize_line(DISK_ROW, 2)
        self.assertIsInstance(token, RawRecord)
        self.assertEqual(token.fields[4], '')
        self.assertEqual(token.fields[5], '')
        self.assertEqual(token.version, '1')
        self.assertEqual(len(token.fields), len(tokenize_line(DISK_HEADER, 1).columns))

    def test_not_a_y_line(self):
        with self.assertRaises(FormatError) as ctx:
            tokenize_line("Disk name    NSD volume ID", 7)
        self.assertEqual(ctx.exception.line_number, 7)

    def test_field_count_mismatch_names_line(self):
        header = tokenize_line(DISK_HEADER, 1)
        record = tokenize_line("mmlsdisk::0:1:::nsd1:nsd:", 5)
        with self.assertRaises(FormatError) as ctx:
            record.pair_with(header)
        self.assertEqual(ctx.exception.line_number, 5)
        self.assertIn("line 1", ctx.exception.message)

    def test_encode_round_trip(self):
        record = tokenize_line(DISK_ROW, 1)
        self.assertEqual(encode_record(record.fields), DISK_ROW)
        self.assertEqual(encode_header(tokenize_line(DISK_HEADER, 1)), DISK_HEADER)


class TestBinder(unittest.TestCase):
    """Test cases for typed column access."""

    def bound(self, row=DISK_ROW, header=DISK_HEADER):
        return bind(tokenize_line(row, 2), tokenize_line(header, 1), EntityType.DISK)

    def test_typed_access(self):
        row = self.bound()
        self.assertEqual(row.string('nsdName'), 'nsd1')
        self.assertEqual(row.kilobytes('diskSizeKB'), 1048576 * 1024)
        self.assertTrue(row.boolean('metadata'))
        self.assertIn('sectorSize', row.extra)

    def test_undeclared_column_cannot_be_read(self):
        row = self.bound()
        with self.assertRaises(KeyError):
            row.integer('sectorSize')

    def test_column_read_with_declared_kind_only(self):
        row = self.bound()
        with self.assertRaises(TypeError):
            row.integer('diskSizeKB')
        with self.assertRaises(TypeError):
            row.string('metadata')
        with self.assertRaises(TypeError):
            row.kilobytes('diskSizeKB', signed=True)

    def test_missing_mandatory_column(self):
        header = "mmlsdisk::HEADER:version:reserved:reserved:nsdName:failureGroup:"
        row = "mmlsdisk::0:1:::nsd1:1:"
        with self.assertRaises(FormatError) as ctx:
            self.bound(row, header)
        self.assertEqual(ctx.exception.column, 'metadata')

    def test_overflow_after_scaling(self):
        row = DISK_ROW.replace(':1048576:', ':18446744073709551615:')
        with self.assertRaises(DecodeError) as ctx:
            self.bound(row).kilobytes('diskSizeKB')
        self.assertEqual(ctx.exception.column, 'diskSizeKB')

    def test_percent_escape(self):
        header = "mmlsfs::HEADER:version:reserved:reserved:deviceName:fieldName:data:remarks:"
        row = "mmlsfs::0:1:::fs1:defaultMountPoint:%2Fgpfs%3Afs1::"
        bound = bind(tokenize_line(row, 2), tokenize_line(header, 1), EntityType.FS_ATTRIBUTE)
        self.assertEqual(bound.string('data'), '/gpfs:fs1')


class TestParseOutput(unittest.TestCase):
    """Test cases for whole-output parsing."""

    def test_disk(self):
        items = parse(f"{DISK_HEADER}\n{DISK_ROW}\n", filesystem='fs1')
        self.assertEqual(len(items), 1)
        disk = items[0].value
        self.assertEqual(disk.nsd_name, 'nsd1')
        self.assertEqual(disk.pool, 'system')
        self.assertEqual(disk.filesystem, 'fs1')
        self.assertIs(disk.status.state, DiskState.READY)
        self.assertIs(disk.availability.state, AvailabilityState.UP)
        self.assertEqual(items[0].line_number, 2)

    def test_unknown_status_is_kept(self):
        row = DISK_ROW.replace(':ready:', ':migrating:')
        disk = parse(f"{DISK_HEADER}\n{row}\n")[0].value
        self.assertTrue(disk.status.is_unknown)
        self.assertEqual(disk.status.raw, 'migrating')

    def test_non_nsd_disk_has_no_nsd(self):
        row = DISK_ROW.replace(':nsd:512:', ':tsm:512:')
        disk = parse(f"{DISK_HEADER}\n{row}\n")[0].value
        self.assertIsNone(disk.nsd_name)

    def test_bad_row_does_not_stop_parsing(self):
        bad = DISK_ROW.replace(':Yes:Yes:', ':maybe:Yes:')
        good = DISK_ROW.replace('nsd1', 'nsd2')
        items = parse(f"{DISK_HEADER}\n{bad}\n{good}\n")
        self.assertEqual(len(items), 2)
        self.assertTrue(items[0].is_error)
        self.assertIsInstance(items[0].value, DecodeError)
        self.assertEqual(items[0].value.line_number, 2)
        self.assertEqual(items[1].value.name, 'nsd2')

    def test_row_before_header(self):
        items = parse(f"{DISK_ROW}\n")
        self.assertTrue(items[0].is_error)
        self.assertIsInstance(items[0].value, FormatError)

    def test_mixed_sections(self):
        items = parse(MMDF_OUTPUT, filesystem='fs1')
        self.assertEqual([item.entity_type for item in items], [
            EntityType.NSD_CAPACITY, EntityType.POOL, EntityType.UNKNOWN, EntityType.FS_CAPACITY,
        ])
        self.assertIsInstance(items[2].value, UnknownSection)
        self.assertEqual(items[2].value.tag, 'mmdf:metadata')

        pool = collect_entities(items, EntityType.POOL)[0]
        self.assertEqual(pool.filesystem, 'fs1')
        self.assertEqual(pool.total_bytes, 1048576 * 1024)
        self.assertEqual(pool.used_percent, 75)
        self.assertEqual(pool.free_fragments_bytes, 1024 * 1024)

        nsd = collect_entities(items, EntityType.NSD_CAPACITY)[0]
        self.assertEqual((nsd.name, nsd.pool, nsd.filesystem), ('nsd1', 'system', 'fs1'))
        self.assertEqual(nsd.free_bytes, 524288 * 1024)
        self.assertEqual(nsd.free_fragments_bytes, 1024 * 1024)
        total = collect_entities(items, EntityType.FS_CAPACITY)[0]
        self.assertEqual((total.filesystem, total.size_bytes), ('fs1', 1048576 * 1024))

    def test_managers(self):
        text = "\n".join([
            "mmlsmgr:filesystemManager:HEADER:version:reserved:reserved:filesystem:manager:managerIP:",
            "mmlsmgr:filesystemManager:0:1:::fs1:node2:10.0.0.2:",
            "mmlsmgr:filesystemManager:0:1:::fs2:node3::",
            "mmlsmgr:clusterManager:HEADER:version:reserved:reserved:manager:managerIP:",
            "mmlsmgr:clusterManager:0:1:::node1:10.0.0.1:",
        ])
        items = parse(text)
        cluster = collect_entities(items, EntityType.CLUSTER_MANAGER)
        self.assertEqual([(m.name, m.ip) for m in cluster], [('node1', '10.0.0.1')])
        managers = collect_entities(items, EntityType.FS_MANAGER)
        self.assertEqual([(m.filesystem, m.name, m.ip) for m in managers],
                         [('fs1', 'node2', '10.0.0.2'), ('fs2', 'node3', None)])

    def test_fileset(self):
        text = "\n".join([
            "mmlsfileset::HEADER:version:reserved:reserved:filesystemName:filesetName:id:status:path:maxInodes:allocInodes:",
            "mmlsfileset::0:1:::fs1:root:0:Linked:%2Fgpfs%2Ffs1:100000:65792:",
        ])
        fileset = collect_entities(parse(text), EntityType.FILESET)[0]
        self.assertEqual((fileset.filesystem, fileset.name, fileset.path), ('fs1', 'root', '/gpfs/fs1'))
        self.assertEqual((fileset.max_inodes, fileset.alloc_inodes), (100000, 65792))

    def test_pool_free_exceeds_total(self):
        text = MMDF_OUTPUT.replace(':system:1048576:262144:', ':system:1048576:2000000:')
        items = parse(text)
        self.assertTrue(items[1].is_error)
        self.assertEqual(items[1].value.column, 'freeBlocks')

    def test_new_header_replaces_layout(self):
        reordered = "mmlsdisk::HEADER:version:reserved:reserved:storagePool:nsdName:failureGroup:metadata:data:status:availability:"
        text = "\n".join([DISK_HEADER, DISK_ROW, reordered, "mmlsdisk::0:1:::data:nsd7:2:No:Yes:down:down:"])
        disks = collect_entities(parse(text), EntityType.DISK)
        self.assertEqual([d.name for d in disks], ['nsd1', 'nsd7'])
        self.assertEqual(disks[1].pool, 'data')
        self.assertIsNone(disks[1].size_bytes)

    def test_nsd_free_disk(self):
        text = "\n".join([
            NSD_HEADER,
            "mmlsnsd:nsd:0:1:::fs1:nsd1:0A0B0C:node1,node2:/dev/dm-1:",
            "mmlsnsd:nsd:0:1:::(free disk):nsd9:0A0B0D:node1:/dev/sdz:",
        ])
        nsds = collect_entities(parse(text), EntityType.NSD)
        self.assertEqual(nsds[0].servers, ('node1', 'node2'))
        self.assertEqual(nsds[0].device_name, 'dm-1')
        self.assertEqual(nsds[0].filesystem, 'fs1')
        self.assertIsNone(nsds[1].filesystem)

    def test_quota_report_with_banner(self):
        text = "\n".join([
            "*** Report for USR GRP FILESET quotas on fs1",
            QUOTA_HEADER,
            quota_row(),
            quota_row(kind='GRP', name='staff', grace='expired'),
            "",
        ])
        quotas = collect_entities(parse(text), EntityType.QUOTA)
        self.assertEqual(len(quotas), 2)
        self.assertIs(quotas[0].kind, QuotaKind.USER)
        self.assertEqual(quotas[0].block_usage_bytes, 2048 * 1024)
        self.assertEqual(quotas[0].block_grace.seconds, 6 * 86400)
        self.assertIs(quotas[0].files_grace.kind, GraceKind.NONE)
        self.assertEqual(quotas[0].fileset, 'root')
        self.assertIs(quotas[1].block_grace.kind, GraceKind.EXPIRED)

    def test_quota_negative_usage_is_signed(self):
        quota = collect_entities(parse(f"{QUOTA_HEADER}\n{quota_row(usage='-16')}\n"), EntityType.QUOTA)[0]
        self.assertEqual(quota.block_usage_bytes, -16 * 1024)

    def test_quota_bad_grace_and_kind(self):
        items = parse("\n".join([QUOTA_HEADER, quota_row(grace='3 fortnights'), quota_row(kind='XYZ')]))
        self.assertTrue(all(item.is_error for item in items))
        self.assertEqual(items[0].value.column, 'blockGrace')
        self.assertEqual(items[1].value.column, 'quotaType')

    def test_bytes_and_line_iterables(self):
        text = f"{DISK_HEADER}\n{DISK_ROW}\n"
        self.assertEqual(len(parse(text.encode('utf-8'))), 1)
        self.assertEqual(len(parse(iter(text.splitlines()))), 1)

    def test_only_newline_ends_a_line(self):
        # form feed inside a value is data, not a line break
        row = DISK_ROW.replace(':nsd1:', ':nsd\x0c1:')
        items = parse(f"{DISK_HEADER}\n{row}\n{DISK_ROW}\n")
        self.assertEqual([item.line_number for item in items], [2, 3])
        self.assertTrue(all(item.is_entity for item in items))
        self.assertEqual(items[0].value.name, 'nsd\x0c1')

    def test_summary(self):
        summary = ParseSummary()
        bad = DISK_ROW.replace(':Yes:Yes:', ':maybe:Yes:')
        text = MMDF_OUTPUT + f"{DISK_HEADER}\n{bad}\n"
        list(summary.track(parse_output(text)))
        self.assertTrue(summary.failed())
        self.assertTrue(summary.failed(EntityType.DISK))
        self.assertFalse(summary.failed(EntityType.POOL))
        self.assertEqual(summary.unknown['mmdf:metadata'], 1)
        self.assertEqual(summary.to_dict()['entities']['pool'], 1)


if __name__ == '__main__':
    unittest.main()
