from setuptools import setup, find_packages

setup(
    name='forestscore',
    version='1.0',
    packages=find_packages(exclude=['tests', 'experiments']),
    py_modules=[
        'errors',
        'feature_values',
        'predicates',
        'tree_walker',
        'random_forest',
        'pmml_loader',
    ],
    description='PMML random forest scoring',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.9',
    install_requires=['numpy'],
    extras_require={'test': ['pytest']},
)
