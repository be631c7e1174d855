"""
multiply_merge_test provides tests for the multiplicative merge layer.
"""
from __future__ import annotations

import copy
import unittest
from collections import Counter

import torch
from torch import Tensor

from braid.config.layer import LinearBranchConfig, SigmoidBranchConfig
from braid.config.topology import MultiplyMergeConfig
from braid.errors import InvalidConfiguration, ShapeMismatch
from braid.layer import Branch
from braid.layer.linear import LinearBranch
from braid.topology.multiply_merge import MultiplyMerge, Phase


class FixedBranch(Branch):
    """A branch with canned output/delta that counts every call it receives."""

    def __init__(self, output: Tensor, delta: Tensor | None = None) -> None:
        super().__init__()
        self.fixed_output = output
        self.fixed_delta = delta if delta is not None else torch.zeros_like(output)
        self.calls: Counter[str] = Counter()

    def forward(self, x: Tensor) -> Tensor:
        self.calls["forward"] += 1
        self.output = self.fixed_output.clone()
        return self.output

    def backward(self, output: Tensor, gy: Tensor) -> Tensor:
        self.calls["backward"] += 1
        self.delta = self.fixed_delta.clone()
        return self.delta

    def gradient(self, x: Tensor, error: Tensor) -> None:
        self.calls["gradient"] += 1

    def close(self) -> None:
        self.calls["close"] += 1
        super().close()


def t(*values: float) -> Tensor:
    return torch.tensor(values, dtype=torch.float32)


class ForwardTest(unittest.TestCase):
    """
    ForwardTest covers the elementwise product of branch outputs.
    """
    def test_two_branch_product(self) -> None:
        merge = MultiplyMerge()
        merge.add(FixedBranch(t(1, 2, 3)))
        merge.add(FixedBranch(t(4, 5, 6)))
        y = merge.forward(torch.zeros(3))
        self.assertTrue(torch.equal(y, t(4, 10, 18)))
        self.assertIs(merge.output, y)
        self.assertEqual(merge.phase, Phase.FORWARD)

    def test_single_branch_is_identity(self) -> None:
        torch.manual_seed(0)
        branch = LinearBranch(LinearBranchConfig(d_in=4, d_out=4))
        merge = MultiplyMerge()
        merge.add(branch)
        y = merge.forward(torch.randn(3, 4))
        self.assertTrue(torch.equal(y, branch.output))
        self.assertIsNot(y, branch.output)

    def test_fold_order_is_bit_exact(self) -> None:
        torch.manual_seed(1)
        outputs = [torch.randn(5, 7) for _ in range(4)]
        merge = MultiplyMerge()
        for o in outputs:
            merge.add(FixedBranch(o))

        expected = outputs[0].clone()
        for o in outputs[1:]:
            expected = expected * o
        self.assertTrue(torch.equal(merge.forward(torch.zeros(1)), expected))

    def test_run_true_calls_every_branch_once(self) -> None:
        branches = [FixedBranch(t(1, 1)), FixedBranch(t(2, 2))]
        merge = MultiplyMerge(run=True)
        for b in branches:
            merge.add(b)
        merge.forward(torch.zeros(2))
        self.assertEqual([b.calls["forward"] for b in branches], [1, 1])

    def test_run_false_combines_existing_outputs(self) -> None:
        a, b = FixedBranch(t(9, 9)), FixedBranch(t(9, 9))
        a.output = t(1, 2)
        b.output = t(3, 4)
        merge = MultiplyMerge(run=False)
        merge.add(a)
        merge.add(b)
        y = merge.forward(torch.zeros(2))
        self.assertTrue(torch.equal(y, t(3, 8)))
        self.assertEqual(a.calls["forward"] + b.calls["forward"], 0)

    def test_empty_merge_rejects_forward(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            MultiplyMerge().forward(torch.zeros(3))

    def test_shape_mismatch(self) -> None:
        merge = MultiplyMerge()
        merge.add(FixedBranch(t(1, 2, 3)))
        merge.add(FixedBranch(t(1, 2)))
        with self.assertRaises(ShapeMismatch) as ctx:
            merge.forward(torch.zeros(3))
        self.assertEqual(ctx.exception.index, 1)
        self.assertIsInstance(ctx.exception, ValueError)

    def test_out_is_resized_and_filled(self) -> None:
        merge = MultiplyMerge()
        merge.add(FixedBranch(t(1, 2, 3)))
        merge.add(FixedBranch(t(2, 2, 2)))
        out = torch.empty(0)
        merge.forward(torch.zeros(3), out)
        self.assertTrue(torch.equal(out, t(2, 4, 6)))


class BackwardTest(unittest.TestCase):
    """
    BackwardTest covers delta accumulation and the pass-through mode.
    """
    def test_run_true_sums_deltas(self) -> None:
        merge = MultiplyMerge(run=True)
        merge.add(FixedBranch(t(1, 2, 3), t(1, 1, 1)))
        merge.add(FixedBranch(t(4, 5, 6), t(2, 2, 2)))
        x = torch.zeros(3)
        merge.forward(x)
        g = merge.backward(x, t(1, 1, 1))
        self.assertTrue(torch.equal(g, t(3, 3, 3)))
        self.assertEqual(merge.phase, Phase.BACKWARD)

    def test_each_branch_sees_its_own_output_and_gy(self) -> None:
        seen: list[tuple[Tensor, Tensor]] = []

        class Recording(FixedBranch):
            def backward(self, output: Tensor, gy: Tensor) -> Tensor:
                seen.append((output.clone(), gy.clone()))
                return super().backward(output, gy)

        merge = MultiplyMerge()
        merge.add(Recording(t(1, 2)))
        merge.add(Recording(t(3, 4)))
        merge.forward(torch.zeros(2))
        merge.backward(torch.zeros(2), t(5, 6))
        self.assertTrue(torch.equal(seen[0][0], t(1, 2)))
        self.assertTrue(torch.equal(seen[1][0], t(3, 4)))
        for _, gy in seen:
            self.assertTrue(torch.equal(gy, t(5, 6)))

    def test_run_false_passes_gradient_through(self) -> None:
        branch = FixedBranch(t(1, 2, 3), t(7, 7, 7))
        merge = MultiplyMerge(run=False)
        merge.add(branch)
        gy = t(0.5, -1.0, 2.0)
        g = merge.backward(torch.zeros(3), gy)
        self.assertTrue(torch.equal(g, gy))
        self.assertEqual(branch.calls["backward"], 0)

    def test_run_false_pass_through_needs_no_branches(self) -> None:
        gy = t(1, 2)
        self.assertTrue(torch.equal(MultiplyMerge(run=False).backward(gy, gy), gy))

    def test_delta_shape_mismatch(self) -> None:
        merge = MultiplyMerge()
        merge.add(FixedBranch(t(1, 2), t(1, 1)))
        merge.add(FixedBranch(t(1, 2), t(1, 1, 1)))
        merge.forward(torch.zeros(2))
        with self.assertRaises(ShapeMismatch):
            merge.backward(torch.zeros(2), t(1, 1))

    def test_sum_is_not_product_rule(self) -> None:
        """Two linear branches: the merged delta is dA + dB, not the true derivative."""
        torch.manual_seed(2)
        merge = MultiplyMerge()
        a = merge.add_config(LinearBranchConfig(d_in=3, d_out=3))
        b = merge.add_config(LinearBranchConfig(d_in=3, d_out=3))
        x = torch.randn(2, 3)
        gy = torch.ones(2, 3)
        merge.forward(x)
        g = merge.backward(x, gy)
        torch.testing.assert_close(g, gy @ a.weight + gy @ b.weight)  # type: ignore[attr-defined]


class GradientTest(unittest.TestCase):
    """
    GradientTest covers parameter-gradient fan-out.
    """
    def test_run_true_reaches_every_branch(self) -> None:
        branches = [FixedBranch(t(1)), FixedBranch(t(2))]
        merge = MultiplyMerge()
        for b in branches:
            merge.add(b)
        out = t(42)
        merge.gradient(t(0), t(1), out)
        self.assertEqual([b.calls["gradient"] for b in branches], [1, 1])
        self.assertTrue(torch.equal(out, t(42)))
        self.assertEqual(merge.phase, Phase.GRADIENT)

    def test_run_false_is_noop(self) -> None:
        branch = FixedBranch(t(1))
        merge = MultiplyMerge(run=False)
        merge.add(branch)
        merge.gradient(t(0), t(1))
        self.assertEqual(branch.calls["gradient"], 0)

    def test_linear_branch_grads_accumulate_through_merge(self) -> None:
        torch.manual_seed(3)
        merge = MultiplyMerge()
        branch = merge.add_config(LinearBranchConfig(d_in=2, d_out=2))
        merge.add_config(SigmoidBranchConfig())
        x = torch.randn(4, 2)
        err = torch.randn(4, 2)
        merge.gradient(x, err)
        torch.testing.assert_close(branch.weight.grad, err.t() @ x)  # type: ignore[attr-defined]


class LifetimeTest(unittest.TestCase):
    """
    LifetimeTest covers ownership, closing, copying and moving.
    """
    def _merge(self, *, model: bool) -> tuple[MultiplyMerge, list[FixedBranch]]:
        merge = MultiplyMerge(model=model)
        branches = [FixedBranch(t(1, 2)), FixedBranch(t(3, 4))]
        for b in branches:
            merge.add(b)
        return merge, branches

    def test_owning_close_closes_each_branch_once(self) -> None:
        merge, branches = self._merge(model=False)
        self.assertTrue(merge.owns_layer)
        merge.close()
        merge.close()
        self.assertEqual([b.calls["close"] for b in branches], [1, 1])
        self.assertEqual(merge.phase, Phase.CLOSED)

    def test_borrowed_close_closes_nothing(self) -> None:
        merge, branches = self._merge(model=True)
        self.assertFalse(merge.owns_layer)
        merge.close()
        self.assertEqual([b.calls["close"] for b in branches], [0, 0])
        self.assertFalse(any(b.closed for b in branches))

    def test_context_manager_closes(self) -> None:
        merge, branches = self._merge(model=False)
        with merge:
            merge.forward(torch.zeros(2))
        self.assertTrue(all(b.closed for b in branches))

    def test_closed_merge_rejects_forward(self) -> None:
        merge, _ = self._merge(model=False)
        merge.close()
        with self.assertRaises(InvalidConfiguration):
            merge.forward(torch.zeros(2))

    def test_owned_parameters_are_registered(self) -> None:
        owning = MultiplyMerge(model=False)
        owning.add_config(LinearBranchConfig(d_in=2, d_out=3))
        borrowing = MultiplyMerge(model=True)
        borrowing.add(LinearBranch(LinearBranchConfig(d_in=2, d_out=3)))
        self.assertEqual(owning.num_parameters(), 9)
        self.assertEqual(borrowing.num_parameters(), 0)
        self.assertIn("branches.0.weight", owning.state_dict())

    def test_clone_of_owner_deep_copies(self) -> None:
        merge, branches = self._merge(model=False)
        twin = copy.copy(merge)
        self.assertEqual(len(twin.branches), 2)
        self.assertTrue(twin.owns_layer)
        self.assertIsNot(twin.branches[0], branches[0])
        twin.close()
        self.assertEqual([b.calls["close"] for b in branches], [0, 0])
        self.assertTrue(torch.equal(merge.forward(torch.zeros(2)), t(3, 8)))

    def test_clone_of_borrower_shares(self) -> None:
        merge, branches = self._merge(model=True)
        twin = merge.clone()
        self.assertIs(twin.branches[0], branches[0])
        self.assertFalse(twin.owns_layer)

    def test_clone_shares_branches_a_nested_merge_borrows(self) -> None:
        shared = FixedBranch(t(1, 2))
        inner = MultiplyMerge(model=True)
        inner.add(shared)
        outer = MultiplyMerge(model=False)
        outer.add(inner)
        twin = outer.clone()
        self.assertIsNot(twin.branches[0], inner)
        self.assertIs(twin.branches[0].branches[0], shared)  # type: ignore[attr-defined]
        twin.close()
        outer.close()
        self.assertEqual(shared.calls["close"], 0)

    def test_assign_self_is_noop(self) -> None:
        merge, branches = self._merge(model=False)
        self.assertIs(merge.assign(merge), merge)
        self.assertEqual(len(merge.branches), 2)
        self.assertEqual(branches[0].calls["close"], 0)

    def test_assign_releases_previous_branches(self) -> None:
        merge, old = self._merge(model=False)
        source, _ = self._merge(model=True)
        merge.assign(source)
        self.assertEqual([b.calls["close"] for b in old], [1, 1])
        self.assertFalse(merge.owns_layer)
        self.assertIs(merge.branches[0], source.branches[0])

    def test_take_moves_branches(self) -> None:
        source, branches = self._merge(model=False)
        source.weights = t(1, 2, 3)
        target = MultiplyMerge(model=True, run=False)
        target.take(source)
        self.assertTrue(target.owns_layer)
        self.assertTrue(target.run)
        self.assertEqual(len(source.branches), 0)
        self.assertTrue(torch.equal(target.weights, t(1, 2, 3)))
        source.close()
        self.assertEqual([b.calls["close"] for b in branches], [0, 0])
        target.close()
        self.assertEqual([b.calls["close"] for b in branches], [1, 1])

    def test_take_self_is_noop(self) -> None:
        merge, _ = self._merge(model=False)
        merge.take(merge)
        self.assertEqual(len(merge.branches), 2)

    def test_same_branch_cannot_be_added_twice(self) -> None:
        merge = MultiplyMerge()
        branch = FixedBranch(t(1, 2))
        merge.add(branch)
        with self.assertRaises(InvalidConfiguration):
            merge.add(branch)
        merge.close()
        self.assertEqual(branch.calls["close"], 1)

    def test_cannot_add_self_or_non_branch(self) -> None:
        merge = MultiplyMerge()
        with self.assertRaises(InvalidConfiguration):
            merge.add(merge)
        with self.assertRaises(InvalidConfiguration):
            merge.add(torch.nn.Identity())  # type: ignore[arg-type]


class ConfigTest(unittest.TestCase):
    """
    ConfigTest covers building merges from configs, including nesting.
    """
    def test_from_config_builds_nested_merge(self) -> None:
        config = MultiplyMergeConfig.model_validate(
            {
                "type": "MultiplyMerge",
                "branches": [
                    {"type": "LinearBranch", "d_in": 3, "d_out": 3},
                    {
                        "type": "MultiplyMerge",
                        "branches": [
                            {"type": "SigmoidBranch"},
                            {"type": "IdentityBranch"},
                        ],
                    },
                ],
            }
        )
        merge = config.build()
        self.assertIsInstance(merge, MultiplyMerge)
        assert isinstance(merge, MultiplyMerge)
        inner = merge.branches[1]
        self.assertIsInstance(inner, MultiplyMerge)

        x = torch.randn(2, 3)
        y = merge.forward(x)
        expected = merge.branches[0].output * (torch.sigmoid(x) * x)
        self.assertTrue(torch.equal(y, expected))

    def test_config_round_trips(self) -> None:
        merge = MultiplyMerge(model=True, run=False)
        merge.add_config(SigmoidBranchConfig())
        config = merge.config
        self.assertTrue(config.model)
        self.assertFalse(config.run)
        self.assertEqual(len(config.branches), 1)


if __name__ == "__main__":
    unittest.main()
