import argparse as ap
import os
import time
from importlib.machinery import SourceFileLoader

import numpy as np

from ddpcontrol import DDPSettings, DDPSolver, simulate
from ddpcontrol.controls import LinearQuadraticRegulator

from examples.double_integrator import DoubleIntegrator

parser = ap.ArgumentParser()
parser.add_argument('-c', '--config_path',
                    default='examples/double_integrator/config.py',
                    help="The path of config file")
args = parser.parse_args()

config = SourceFileLoader('config', args.config_path).load_module()

random_seed = getattr(config, 'random_seed', None)
if random_seed is None:
    random_seed = int(time.time())
rng = np.random.default_rng(random_seed)

ocp = DoubleIntegrator(**config.params)
settings = DDPSettings.from_dict(config.ddp_settings)

# LQR for the unconstrained problem as a baseline and initial guess
p = ocp.parameters
lqr = LinearQuadraticRegulator(A=p.A, B=p.B, Q=p.Q, R=p.R, xf=p.xf, uf=p.uf)

print("\nSolving double integrator with DDP...")
print("\n" + "+" * 80 + "\n")

t_span = (0., config.t_horizon)

with DDPSolver(ocp, settings) as solver:
    start_time = time.time()
    sol = solver.solve(config.x0, t_span, initial_policy=lqr)
    print(f"\nSolve time: {time.time() - start_time:.2f} sec")

    lqr_traj = simulate.rollout(ocp, lqr, config.x0, t_span)
    print(f"LQR cost: {lqr_traj.cost:.4f}, DDP cost: {sol.trajectory.cost:.4f}")
    print(f"Peak |u|: LQR {np.abs(lqr_traj.u).max():.3f}, "
          f"DDP {np.abs(sol.trajectory.u).max():.3f} "
          f"(bound {p.u_ub[0]:.3f})")

    sol.trajectory.to_dataframe().to_csv(
        os.path.join(config.data_dir, 'ddp_trajectory.csv'), index=False)
    sol.iterations_dataframe().to_csv(
        os.path.join(config.data_dir, 'ddp_iterations.csv'), index=False)

    # Receding horizon re-solves, warm started from the previous policy
    print("\n" + "+" * 80)
    print("\nRunning MPC loop...\n")

    t0, x = 0., np.copy(config.x0)
    policy = sol.policy
    mpc_t, mpc_x = [t0], [x]
    for k in range(config.n_mpc_steps):
        t, x_sim, _, status = simulate.integrate_fixed_time(
            ocp, policy, x, (t0, t0 + config.mpc_interval), **config.sim_kwargs)
        if status != 0:
            print(f"Plant simulation failed at t = {t0:.2f}")
            break

        t0, x = t[-1], x_sim[:, -1]
        mpc_t.append(t0)
        mpc_x.append(x)

        mpc_sol = solver.resolve(x, (t0, t0 + config.t_horizon))
        if mpc_sol.success:
            policy = mpc_sol.policy
            print(f"t = {t0:.2f}: status {mpc_sol.status:d} after "
                  f"{mpc_sol.n_iterations:d} iteration(s), "
                  f"cost {mpc_sol.trajectory.cost:.4f}")
        else:
            print(f"t = {t0:.2f}: {mpc_sol.message}, keeping the previous "
                  f"policy")

    mpc_x = np.stack(mpc_x, axis=-1)
    print(f"\nDistance to goal after MPC: "
          f"{np.linalg.norm(mpc_x[:, -1] - p.xf):.3e}")

# Evaluate the first DDP policy from perturbed initial conditions
x0_pool = (config.x0[:, None] + config.x0_perturbation
           * rng.uniform(-1., 1., size=(ocp.n_states, config.n_sims)))
sims, status = simulate.monte_carlo(ocp, sol.policy, x0_pool, t_span,
                                    **config.sim_kwargs)

final_err = np.array([np.linalg.norm(sim['x'][:, -1] - p.xf)
                      for sim in sims[status == 0]])
print(f"\n{np.count_nonzero(status == 0):d}/{config.n_sims:d} closed-loop "
      f"simulations succeeded, mean final distance to goal "
      f"{final_err.mean():.3e}")
