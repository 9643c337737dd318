import collections
import enum
import logging

import numpy as np
from sklearn.model_selection import train_test_split
from sklearn.utils import check_random_state

from Errors import ConfigurationError
from ShapeSpace import ShapeBounds, Shape2Normalized

logger=logging.getLogger(__name__)

################### params ###################
_ParameterFields=collections.namedtuple('_ParameterFields', [
    'num_cascades', 'num_trees', 'max_tree_depth', 'num_random_pixel_coordinates',
    'num_random_split_tests_per_node',
    # decay rate of the pixel pair probability, per unit of normalized space
    'exponential_lambda',
    'learning_rate'])

# fixed for a whole run, use Replace for a modified copy
class AlgorithmParameters(_ParameterFields):
    __slots__=()

    def __new__(cls, num_cascades=10, num_trees=500, max_tree_depth=5,
                num_random_pixel_coordinates=400, num_random_split_tests_per_node=20,
                exponential_lambda=10.0, learning_rate=0.1):
        return super(AlgorithmParameters, cls).__new__(cls, num_cascades, num_trees, max_tree_depth,
                                                       num_random_pixel_coordinates, num_random_split_tests_per_node,
                                                       exponential_lambda, learning_rate)

    def Replace(self, **kwargs):
        return self._replace(**kwargs)

    def Validate(self):
        for name in ('num_cascades', 'num_trees', 'max_tree_depth', 'num_random_split_tests_per_node'):
            if int(getattr(self, name))<1:
                raise ConfigurationError('%s must be at least 1, got %r' % (name, getattr(self, name)))
        if int(self.num_random_pixel_coordinates)<2:
            raise ConfigurationError('num_random_pixel_coordinates must be at least 2, got %r'
                                     % self.num_random_pixel_coordinates)
        if not self.exponential_lambda>0 or not np.isfinite(self.exponential_lambda):
            raise ConfigurationError('exponential_lambda must be positive, got %r' % self.exponential_lambda)
        if not 0<self.learning_rate<=1:
            raise ConfigurationError('learning_rate must be in (0, 1], got %r' % self.learning_rate)
        return self

    def __repr__(self):
        return 'AlgorithmParameters(%s)' % ', '.join('%s=%r' % kv for kv in zip(self._fields, self))

################### samples ###################
class Sample:
    __slots__=('idx', 'estimate')

    def __init__(self, idx, estimate):
        self.idx=idx
        self.estimate=np.array(estimate, dtype=np.float64)

    def __repr__(self):
        return 'Sample(idx=%d, landmarks=%d)' % (self.idx, len(self.estimate))


class InitializationStrategy(enum.Enum):
    KAZEMI='kazemi'
    LINEAR_COMBINATION='linear'


# for every shape choose $n other shapes as initialization
def CreateTrainingSamplesKazemi(shapes, rnd, numInitializationsPerImage=20):
    samples=[]
    if len(shapes)==0:
        return samples
    if len(shapes)<2:
        raise ConfigurationError('Kazemi initialization needs at least 2 shapes, got %d' % len(shapes))
    for i in range(len(shapes)):
        others=np.delete(np.arange(len(shapes)), i)
        picks=rnd.choice(others, numInitializationsPerImage, replace=numInitializationsPerImage>len(others))
        for j in picks:
            samples.append(Sample(i, shapes[j]))
    return samples

# initializations as random convex combinations of all shapes
def CreateTrainingSamplesThroughLinearCombinations(shapes, rnd, numInitializationsPerImage=20):
    samples=[]
    if len(shapes)==0:
        return samples
    stacked=np.asarray(shapes, dtype=np.float64)
    for i in range(len(shapes)):
        weights=rnd.dirichlet(np.ones(len(shapes)), numInitializationsPerImage)
        for w in weights:
            samples.append(Sample(i, np.tensordot(w, stacked, axes=1)))
    return samples

SAMPLE_CREATORS={
    InitializationStrategy.KAZEMI: CreateTrainingSamplesKazemi,
    InitializationStrategy.LINEAR_COMBINATION: CreateTrainingSamplesThroughLinearCombinations,
}

def CreateTrainingSamples(strategy, shapes, rnd, numInitializationsPerImage=20):
    return SAMPLE_CREATORS[InitializationStrategy(strategy)](shapes, rnd, numInitializationsPerImage)

# map every shape into its rect relative frame, in place
def ConvertShapesToNormalizedShapeSpace(rects, shapes):
    if len(rects)!=len(shapes):
        raise ConfigurationError('got %d rects for %d shapes' % (len(rects), len(shapes)))
    for i in range(len(shapes)):
        shapes[i]=Shape2Normalized(shapes[i], rects[i])

def CreateTrainingRectsFromShapeBounds(shapes):
    return [ShapeBounds(shape) for shape in shapes]

# hold out round(N*p) samples for validation
def RandomPartitionTrainingSamples(samples, rnd, validate_percent=0.1):
    if not 0<=validate_percent<=1:
        raise ConfigurationError('validate_percent must be in [0, 1], got %r' % validate_percent)
    samples=list(samples)
    num_validate=int(np.floor(len(samples)*validate_percent+0.5))
    if num_validate==0:
        order=rnd.permutation(len(samples))
        return [samples[i] for i in order], []
    if num_validate==len(samples):
        order=rnd.permutation(len(samples))
        return [], [samples[i] for i in order]
    train, validate=train_test_split(samples, test_size=num_validate, shuffle=True, random_state=rnd)
    return train, validate

################### training data ###################
# owns images, ground truth and the working samples of a training run
class TrainingData:
    def __init__(self, images, shapes, rects=None, params=None, rnd=None):
        self.images=list(images)
        self.shapes=[np.array(s, dtype=np.float64) for s in shapes]
        self.rects=None if rects is None else [np.array(r, dtype=np.float64) for r in rects]
        self.params=params if params is not None else AlgorithmParameters()
        self.rnd=check_random_state(rnd)
        self.train_samples=[]
        self.validate_samples=[]
        self.normalized=False

    @property
    def num_landmarks(self):
        return len(self.shapes[0]) if self.shapes else 0

    def Validate(self):
        if len(self.shapes)==0:
            raise ConfigurationError('no shapes given')
        if len(self.images)!=len(self.shapes):
            raise ConfigurationError('got %d images for %d shapes' % (len(self.images), len(self.shapes)))
        if self.rects is not None and len(self.rects)!=len(self.shapes):
            raise ConfigurationError('got %d rects for %d shapes' % (len(self.rects), len(self.shapes)))
        if self.num_landmarks==0:
            raise ConfigurationError('shapes have no landmarks')
        for i, shape in enumerate(self.shapes):
            if shape.shape!=(self.num_landmarks, 2):
                raise ConfigurationError('shape %d has layout %s, expected (%d, 2)'
                                         % (i, shape.shape, self.num_landmarks))
        for i, img in enumerate(self.images):
            if np.ndim(img)!=2 or np.size(img)==0:
                raise ConfigurationError('image %d is not a non-empty grayscale image' % i)
        return self

    # normalize shapes and create train/validate samples
    def Prepare(self, strategy=InitializationStrategy.KAZEMI, numInitializationsPerImage=20, validate_percent=0.1):
        self.params.Validate()
        self.Validate()
        if self.rects is None:
            logger.info('no rects given, using shape bounds')
            self.rects=CreateTrainingRectsFromShapeBounds(self.shapes)
        if not self.normalized:
            ConvertShapesToNormalizedShapeSpace(self.rects, self.shapes)
            self.normalized=True
        samples=CreateTrainingSamples(strategy, self.shapes, self.rnd, numInitializationsPerImage)
        if not samples:
            raise ConfigurationError('no training samples created')
        self.train_samples, self.validate_samples=RandomPartitionTrainingSamples(samples, self.rnd, validate_percent)
        logger.info('created %d training and %d validation samples from %d images',
                    len(self.train_samples), len(self.validate_samples), len(self.images))
        return self
