import asyncio
import os
import shutil
import tempfile
import unittest

from netscope.data.db import Database
from netscope.parsers.nmap_xml import parse_nmap_xml

REPORT = """<nmaprun>
<host><status state="up"/><address addr="192.168.1.9" addrtype="ipv4"/>
<ports><port protocol="tcp" portid="21"><state state="open"/><service name="ftp"/></port></ports></host>
<runstats><finished elapsed="1.5"/><hosts up="1" down="0" total="1"/></runstats>
</nmaprun>"""


class TestScanDatabase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.test_dir, "nested", "scans.db")
        self.db = Database(self.db_path)
        await self.db.init()

    async def asyncTearDown(self):
        await self.db.close()
        shutil.rmtree(self.test_dir)

    async def test_init_is_idempotent_and_creates_file(self):
        await self.db.init()
        self.assertTrue(self.db.initialized)
        self.assertTrue(os.path.exists(self.db_path))

    async def test_concurrent_init(self):
        fresh = Database(os.path.join(self.test_dir, "fresh.db"))
        try:
            await asyncio.gather(*(fresh.init() for _ in range(5)))
            self.assertTrue(fresh.initialized)
            await fresh.create_scan_record("x", owner_id="alice", target="10.0.0.1", profile="quick")
            self.assertIsNotNone(await fresh.get_scan_record("x"))
        finally:
            await fresh.close()

    async def test_record_lifecycle(self):
        await self.db.create_scan_record(
            "scan-1", owner_id="alice", target="192.168.1.9", profile="quick", config={"timingTemplate": "T4"}
        )
        record = await self.db.get_scan_record("scan-1")
        self.assertEqual(record["status"], "pending")
        self.assertEqual(record["name"], "Scan of 192.168.1.9")
        self.assertEqual(record["config"], {"timingTemplate": "T4"})
        self.assertIsNone(record["finished_at"])

        await self.db.update_scan_status("scan-1", "running")
        self.assertEqual((await self.db.get_scan_record("scan-1"))["status"], "running")

        await self.db.save_scan_results("scan-1", parse_nmap_xml(REPORT))
        record = await self.db.get_scan_record("scan-1")
        self.assertEqual(record["status"], "completed")
        self.assertEqual(record["duration_ms"], 1500)
        self.assertEqual(record["summary"], {"totalHosts": 1, "hostsUp": 1, "totalOpenPorts": 1})
        self.assertEqual(record["results"][0]["ip"], "192.168.1.9")
        self.assertEqual(record["results"][0]["riskReasons"], ["FTP service - unencrypted file transfer"])
        self.assertIsNotNone(record["finished_at"])

    async def test_fail_scan_record(self):
        await self.db.create_scan_record("scan-2", owner_id="alice", target="10.0.0.1", profile="full", name="nightly")
        await self.db.fail_scan_record("scan-2", "Scan cancelled by user")

        record = await self.db.get_scan_record("scan-2")
        self.assertEqual(record["name"], "nightly")
        self.assertEqual(record["status"], "failed")
        self.assertEqual(record["error_message"], "Scan cancelled by user")
        self.assertIsNone(record["results"])

    async def test_owner_scoping(self):
        await self.db.create_scan_record("scan-3", owner_id="alice", target="10.0.0.1", profile="quick")

        self.assertIsNotNone(await self.db.get_scan_record("scan-3", owner_id="alice"))
        self.assertIsNone(await self.db.get_scan_record("scan-3", owner_id="bob"))
        self.assertIsNone(await self.db.get_scan_record("missing"))

    async def test_list_scans_paginates_newest_first(self):
        for i in range(5):
            await self.db.create_scan_record(f"scan-{i}", owner_id="alice", target=f"10.0.0.{i}", profile="quick")
        await self.db.create_scan_record("other", owner_id="bob", target="10.0.0.99", profile="quick")

        page1, total = await self.db.list_scans("alice", page=1, limit=2)
        page3, _ = await self.db.list_scans("alice", page=3, limit=2)

        self.assertEqual(total, 5)
        self.assertEqual([r["id"] for r in page1], ["scan-4", "scan-3"])
        self.assertEqual([r["id"] for r in page3], ["scan-0"])
        self.assertNotIn("results", page1[0])


if __name__ == "__main__":
    unittest.main()
