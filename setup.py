import re

import setuptools


with open('README.md', 'r') as fh:
    long_description = fh.read()

with open('requirements.txt', 'r') as fh:
    requirements = fh.read().splitlines()

# Read the version without importing the package, whose dependencies may not
# be installed yet
with open('ddpcontrol/__init__.py', 'r') as fh:
    __version__ = re.search(r"^__version__ = '([^']+)'", fh.read(),
                            re.MULTILINE).group(1)

if __name__ == '__main__':
    setuptools.setup(
        name='ddpcontrol',
        version=__version__,
        description=("Continuous-time differential dynamic programming for "
                     "trajectory optimization and model predictive control"),
        long_description=long_description,
        long_description_content_type='text/markdown',
        packages=setuptools.find_packages(include=['ddpcontrol',
                                                   'ddpcontrol.*']),
        python_requires='>=3.8',
        install_requires=requirements,
        extras_require={'test': ['pytest']})
