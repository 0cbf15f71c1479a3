import numpy as np

from ddpcontrol.problem import LinearQuadraticProblem


class DoubleIntegrator(LinearQuadraticProblem):
    """
    Point mass moving along a line, driven by a force. The state is
    `x = [position, velocity]` and the dynamics are

        `dx/dt = [velocity, u / mass]`.

    Costs, input bounds and linear constraints are those of
    `LinearQuadraticProblem`, whose `A` and `B` matrices are computed from
    `mass` and cannot be set directly.
    """
    _required_parameters = {'mass': 1., 'Q': np.eye(2), 'R': np.eye(1),
                            'xf': 0., 'uf': 0.}
    _optional_parameters = {'Qf': None, 'u_lb': None, 'u_ub': None,
                            'C_eq': None, 'D_eq': None, 'e_eq': 0.,
                            'H_state': None, 'h_state': 0.}

    @staticmethod
    def _parameter_update_fun(obj, **new_params):
        if 'A' in new_params or 'B' in new_params:
            raise ValueError("A and B are determined by mass")

        if 'mass' in new_params:
            mass = float(obj.mass)
            if not mass > 0.:
                raise ValueError("mass must be positive")
            obj.mass = mass
            new_params['A'] = obj.A = np.array([[0., 1.], [0., 0.]])
            new_params['B'] = obj.B = np.array([[0.], [1. / mass]])

        LinearQuadraticProblem._parameter_update_fun(obj, **new_params)
