"""
Tests of the deployment block resolver
"""

import asyncio
import unittest

from eigenindexer.core.deployment_block import (
    DeploymentBlockConfig,
    DeploymentBlockResolver,
    has_code,
)
from eigenindexer.utils.error_utils import ConfigurationError
from eigenindexer.tests.utils import (
    DEPOSIT_CONTRACT_ADDRESS,
    POD_MANAGER_ADDRESS,
    FakeChain,
)


class TestDeploymentBlockResolver(unittest.TestCase):
    """
    Test deployment block discovery against a fake chain.
    """

    def setUp(self):
        self.chain = FakeChain(head=1000)
        self.resolver = DeploymentBlockResolver(self.chain)

    def test_known_block_short_circuits(self):
        self.chain.deploy(DEPOSIT_CONTRACT_ADDRESS, 500)
        config = DeploymentBlockConfig("DepositContract", known_deployment_block=600)

        block = asyncio.run(self.resolver.resolve(DEPOSIT_CONTRACT_ADDRESS, config))

        self.assertEqual(block, 600)
        self.assertEqual(self.chain.calls["get_code"], 1)
        self.assertEqual(self.chain.calls["get_block_number"], 0)

    def test_wrong_known_block_falls_back_to_search(self):
        self.chain.deploy(DEPOSIT_CONTRACT_ADDRESS, 500)
        config = DeploymentBlockConfig("DepositContract", known_deployment_block=400)

        block = asyncio.run(self.resolver.resolve(DEPOSIT_CONTRACT_ADDRESS, config))

        self.assertEqual(block, 500)

    def test_binary_search_boundaries(self):
        for deployment_block in [0, 1, 499, 500, 999, 1000]:
            with self.subTest(deployment_block=deployment_block):
                chain = FakeChain(head=1000)
                chain.deploy(POD_MANAGER_ADDRESS, deployment_block)
                resolver = DeploymentBlockResolver(chain)

                block = asyncio.run(
                    resolver.resolve(
                        POD_MANAGER_ADDRESS, DeploymentBlockConfig("EigenPodManager")
                    )
                )

                self.assertEqual(block, deployment_block)
                # One probe per halving of [0, 1000].
                self.assertLessEqual(chain.calls["get_code"], 11)

    def test_failed_probes_count_as_absent(self):
        self.chain.deploy(POD_MANAGER_ADDRESS, 200)
        # The first midpoint fails, pushing the search above it.
        self.chain.failing_code_blocks.add(500)

        block = asyncio.run(
            self.resolver.binary_search(POD_MANAGER_ADDRESS, self.chain.head)
        )

        self.assertEqual(block, 501)

    def test_fallback_offset(self):
        config = DeploymentBlockConfig("EigenPodManager", fallback_block_offset=300)

        block = asyncio.run(self.resolver.resolve(POD_MANAGER_ADDRESS, config))

        self.assertEqual(block, 700)

    def test_fallback_offset_floor(self):
        config = DeploymentBlockConfig("EigenPodManager", fallback_block_offset=5000)

        block = asyncio.run(self.resolver.resolve(POD_MANAGER_ADDRESS, config))

        self.assertEqual(block, 0)

    def test_no_code_without_fallback(self):
        config = DeploymentBlockConfig("EigenPodManager")

        with self.assertRaises(ConfigurationError):
            asyncio.run(self.resolver.resolve(POD_MANAGER_ADDRESS, config))

    def test_result_is_cached(self):
        self.chain.deploy(POD_MANAGER_ADDRESS, 321)
        config = DeploymentBlockConfig("EigenPodManager")

        first = asyncio.run(self.resolver.resolve(POD_MANAGER_ADDRESS, config))
        probes = self.chain.calls["get_code"]
        second = asyncio.run(self.resolver.resolve(POD_MANAGER_ADDRESS.lower(), config))

        self.assertEqual(first, 321)
        self.assertEqual(second, 321)
        self.assertEqual(self.chain.calls["get_code"], probes)

    def test_has_code(self):
        self.assertFalse(has_code(b""))
        self.assertFalse(has_code("0x"))
        self.assertFalse(has_code(None))
        self.assertTrue(has_code(b"\x60"))
        self.assertTrue(has_code("0x6080"))


if __name__ == "__main__":
    unittest.main()
