"""
Basic Usage Examples for Bifurcation v1.0

This file demonstrates the core functionality of the library.
"""

import sys
sys.path.insert(0, '..')

import numpy as np

from bifurcation import (
    BifurcationAnalyzer,
    BifurcationKind,
    ContinuationOptions,
    IntegratorOptions,
    SymbolicModel,
    systems,
)


def example_1_trajectory():
    """
    Example 1: Trajectory of the harmonic oscillator

    System:
        ẋ = y
        ẏ = -x
    """
    print("=" * 60)
    print("Example 1: Harmonic Oscillator Trajectory")
    print("=" * 60)

    model = systems.harmonic_oscillator()
    print(f"\n{model}")

    analyzer = BifurcationAnalyzer(model, integrator=IntegratorOptions(rtol=1e-9, atol=1e-12))
    traj = analyzer.run_trajectory([1.0, 0.0], (0.0, 2 * np.pi), sample_dt=np.pi / 2)

    print("\n  t        x         y")
    print("  " + "-" * 28)
    for t, state in traj:
        print(f"  {t:6.3f}  {state[0]:8.5f}  {state[1]:8.5f}")
    print(f"\n  {traj.n_steps} steps, {traj.n_rejected} rejected")

    return traj


def example_2_lorenz_equilibria():
    """
    Example 2: Equilibria of the Lorenz system

    Sweeps a grid of guesses in parallel and classifies every
    distinct equilibrium.
    """
    print("\n" + "=" * 60)
    print("Example 2: Lorenz Equilibria")
    print("=" * 60)

    analyzer = BifurcationAnalyzer(systems.lorenz(), workers=4)
    points = analyzer.find_fixed_points(
        domain=[(-10.0, 10.0), (-10.0, 10.0), (0.0, 30.0)], points_per_axis=3
    )

    for fp in points:
        state = ", ".join(f"{v:8.4f}" for v in fp.state)
        print(f"  ({state})  {fp.eq_type.value:15s} stable={fp.stable}")

    return points


def example_3_saddle_node():
    """
    Example 3: Following a branch around a fold

    System:
        ẋ = p - x²

    The two equilibrium branches x = ±√p meet at p = 0.
    """
    print("\n" + "=" * 60)
    print("Example 3: Saddle-Node Continuation")
    print("=" * 60)

    analyzer = BifurcationAnalyzer(
        systems.saddle_node(), continuation=ContinuationOptions(direction=-1, ds=0.05)
    )
    branch = analyzer.trace_branch([1.0], "p", (-1.0, 2.0))

    print(f"\n  {len(branch)} points, termination: {branch.termination.value}")
    print(f"  Parameter monotonic: {branch.is_monotonic()}")
    for event in branch.events:
        print(f"  {event.kind.value} at p = {event.parameter_value:.3e}, x = {event.state[0]:.3e}")

    return branch


def example_4_hopf():
    """
    Example 4: Hopf bifurcation and the emerging cycle

    System (Hopf normal form):
        ẋ = px - y - x(x² + y²)
        ẏ = x + py - y(x² + y²)
    """
    print("\n" + "=" * 60)
    print("Example 4: Hopf Bifurcation")
    print("=" * 60)

    analyzer = BifurcationAnalyzer(systems.hopf_normal_form(p=-0.5))
    branch = analyzer.trace_branch([0.0, 0.0], "p", (-0.5, 0.5))

    hopf = branch.events_of(BifurcationKind.HOPF)[0]
    print(f"\n  Hopf at p = {hopf.parameter_value:.3e}")
    print(f"  Period estimate: {hopf.period:.6f}")
    print(f"  l1 = {hopf.lyapunov_coefficient:.6f} "
          f"({'supercritical' if hopf.supercritical else 'subcritical'})")

    cycle = analyzer.limit_cycle_from_hopf(hopf, offset=0.04, amplitude=0.2)
    print(f"\n  Cycle at p = 0.04: T = {cycle.period:.6f}, amplitude = {cycle.amplitude:.4f}")
    print(f"  Floquet multipliers: {np.round(cycle.floquet_multipliers, 5)}")

    family = analyzer.continue_limit_cycles(cycle, "p", (0.0, 0.2), step=0.04)
    print("\n  p        amplitude   sqrt(p)")
    print("  " + "-" * 30)
    for p, a in zip(family.parameter_values(), family.amplitudes()):
        print(f"  {p:6.3f}   {a:8.5f}   {np.sqrt(p):8.5f}")

    return analyzer


def example_5_custom_model():
    """
    Example 5: FitzHugh-Nagumo neuron

    Increasing the injected current destabilises the resting state.
    """
    print("\n" + "=" * 60)
    print("Example 5: FitzHugh-Nagumo")
    print("=" * 60)

    model = SymbolicModel(
        ["v - v**3/3 - w + I", "eps*(v + a - b*w)"],
        variables=["v", "w"],
        parameters={"I": 0.0, "a": 0.7, "b": 0.8, "eps": 0.08},
        name="fitzhugh_nagumo",
    )
    analyzer = BifurcationAnalyzer(model)
    rest = analyzer.find_fixed_points(guesses=[[-1.2, -0.6]])[0]
    print(f"\n  Resting state at I = 0: {rest.state}  ({rest.eq_type.value})")

    branch = analyzer.trace_branch(rest, "I", (0.0, 1.0))
    for event in branch.events:
        print(f"  {event.kind.value} at I = {event.parameter_value:.6f}")

    summary = analyzer.summary()
    print(f"\n  Summary: {summary['branches']} branch(es), events {summary['events']}")

    return analyzer


def main():
    """Run all examples."""
    print("\n" + "=" * 60)
    print("Bifurcation v1.0 - Examples")
    print("=" * 60)

    example_1_trajectory()
    example_2_lorenz_equilibria()
    example_3_saddle_node()
    example_4_hopf()
    example_5_custom_model()

    print("\n" + "=" * 60)
    print("All examples completed!")
    print("=" * 60)


if __name__ == "__main__":
    main()
