"""Config file for the double integrator DDP and MPC example."""

import os

import numpy as np

# Directory where trajectories and iteration logs will be saved
main_dir = os.path.join('examples', 'double_integrator')
data_dir = os.path.join(main_dir, 'data')

os.makedirs(data_dir, exist_ok=True)

random_seed = 123

# Changes to default problem parameters
params = {'mass': 2., 'Q': np.diag([1., 0.1]), 'R': 0.5 * np.eye(1),
          'xf': [1., 0.], 'u_lb': -1., 'u_ub': 1.}

# Initial state and time horizon of the first solve
x0 = np.array([-1., 0.])
t_horizon = 4.

# DDP settings, in the nested format read by DDPSettings.from_dict
ddp_settings = {'max_num_iterations': 20,
                'min_rel_cost': 1e-04,
                'inequality_constraint_mu': 1e-02,
                'inequality_constraint_delta': 1e-03,
                'min_time_step': 1e-04,
                'n_threads': 2,
                'use_feedback_policy': True,
                'display_info': True,
                'display_short_summary': True,
                'strategy': 'line_search',
                'line_search': {'min_step_size': 1e-02}}

# Model predictive control loop: the plant is simulated for mpc_interval with
# the latest feedback policy between re-solves over a receding horizon
n_mpc_steps = 10
mpc_interval = 0.2

# Number of perturbed initial conditions to evaluate the final policy from,
# and the size of the perturbation
n_sims = 20
x0_perturbation = 0.25

# Keyword arguments for closed-loop simulation
sim_kwargs = {'atol': 1e-08, 'rtol': 1e-04, 'method': 'RK23'}
