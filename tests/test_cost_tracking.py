import unittest

from assist_gateway.domain.models import Usage
from assist_gateway.services.cost_tracking import ProviderRate, compute_cost, cost_for_provider, normalize_usage


class TestCostTracking(unittest.TestCase):
    def test_normalize_usage_supports_multiple_shapes(self):
        self.assertEqual(normalize_usage({"input_tokens": 10, "output_tokens": 3}), Usage(10, 3, 13))
        self.assertEqual(
            normalize_usage({"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9}),
            Usage(7, 2, 9),
        )
        self.assertEqual(normalize_usage(None), Usage(0, 0, 0))

    def test_both_usage_shapes_normalize_identically(self):
        a = normalize_usage({"input_tokens": 50, "output_tokens": 25})
        b = normalize_usage({"prompt_tokens": 50, "completion_tokens": 25, "total_tokens": 75})
        self.assertEqual(a, b)
        self.assertEqual(a, Usage(50, 25, 75))

    def test_normalize_usage_ignores_garbage(self):
        self.assertEqual(normalize_usage({"prompt_tokens": "x", "completion_tokens": -4}), Usage(0, 0, 0))

    def test_compute_cost_uses_per_thousand_rates(self):
        rate = ProviderRate(input_rate_per_1k=0.003, output_rate_per_1k=0.015)
        self.assertAlmostEqual(compute_cost(Usage(2000, 1000, 3000), rate), 0.021)

    def test_unknown_rate_costs_nothing(self):
        self.assertEqual(compute_cost(Usage(100, 100, 200), None), 0.0)
        self.assertEqual(cost_for_provider("deepseek", Usage(100, 100, 200), {}), 0.0)

    def test_rate_from_mapping(self):
        rate = ProviderRate.from_mapping({"input_rate_per_1k": "0.5", "output_rate_per_1k": -1})
        self.assertEqual(rate.to_dict(), {"input_rate_per_1k": 0.5, "output_rate_per_1k": 0.0})

    def test_usage_addition(self):
        self.assertEqual(Usage(1, 2, 3) + Usage(10, 20, 30), Usage(11, 22, 33))


if __name__ == "__main__":
    unittest.main()
