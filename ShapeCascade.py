import logging
import pickle
import time

import numpy as np
import tqdm

from Errors import ConfigurationError, DegenerateDataError
from PixelFeatures import SamplePixelCoordinates, ComputePixelIntensities, ShapeIntensities
from RegressionTree import TreeTraining, TrainTree
from ShapeSpace import MeanShape, Shape2Normalized, Shape2Image

logger=logging.getLogger(__name__)

########################## error ###################################
# mean over samples of the squared residual norm
def MeanSquaredResidual(residuals):
    if len(residuals)==0:
        return float('nan')
    return float(np.mean(np.sum(np.square(residuals), (1, 2))))

########################## model ###################################
# one cascade level: a fixed pixel pool on the stage's mean shape and the trees fitted on it
class StageRegressor:
    def __init__(self, mean_shape, pixel_coordinates, trees=None, learning_rate=0.1):
        self.mean_shape=mean_shape
        self.pixel_coordinates=pixel_coordinates
        self.trees=[] if trees is None else list(trees)
        self.learning_rate=learning_rate

    # summed leaf displacements of all trees, (n, landmarks, 2)
    def Predict(self, intensities):
        intensities=np.atleast_2d(intensities)
        delta=np.zeros((len(intensities),)+self.mean_shape.shape)
        for tree in self.trees:
            delta+=tree.predict(intensities)
        return delta

    # refine a normalized estimate of the shape in image
    def Apply(self, image, rect, estimate):
        intensities=ShapeIntensities(image, rect, estimate, self.pixel_coordinates, self.mean_shape)
        return estimate+self.learning_rate*self.Predict(intensities)[0]

    def __repr__(self):
        return 'StageRegressor(trees=%d, pixels=%d)' % (len(self.trees), len(self.pixel_coordinates))


# trained cascade, stages are applied strictly in training order
class CascadeModel:
    def __init__(self, initial_shape, stages=None):
        self.initial_shape=np.asarray(initial_shape, dtype=np.float64)
        self.stages=[] if stages is None else list(stages)

    @property
    def num_landmarks(self):
        return len(self.initial_shape)

    def _Start(self, rect, initial_shape):
        if initial_shape is None:
            return self.initial_shape.copy()
        initial_shape=np.asarray(initial_shape, dtype=np.float64)
        if initial_shape.shape!=self.initial_shape.shape:
            raise ConfigurationError('initial shape has layout %s, model expects %s'
                                     % (initial_shape.shape, self.initial_shape.shape))
        return Shape2Normalized(initial_shape, rect)

    # image space shape after every stage
    def StagedPredict(self, image, rect, initial_shape=None):
        rect=np.asarray(rect, dtype=np.float64)
        estimate=self._Start(rect, initial_shape)
        for stage in self.stages:
            estimate=stage.Apply(image, rect, estimate)
            yield Shape2Image(estimate, rect)

    # initial_shape is in image coords, the mean shape placed in rect when omitted
    def Predict(self, image, rect, initial_shape=None):
        rect=np.asarray(rect, dtype=np.float64)
        shape=Shape2Image(self._Start(rect, initial_shape), rect)
        for shape in self.StagedPredict(image, rect, initial_shape):
            pass
        return shape

    def PredictMany(self, images, rects, initial_shapes=None):
        if initial_shapes is None:
            initial_shapes=[None]*len(images)
        if not len(images)==len(rects)==len(initial_shapes):
            raise ConfigurationError('got %d images, %d rects and %d initial shapes'
                                     % (len(images), len(rects), len(initial_shapes)))
        return np.array([self.Predict(images[i], rects[i], initial_shapes[i]) for i in range(len(images))])

    def __repr__(self):
        return 'CascadeModel(stages=%d, landmarks=%d)' % (len(self.stages), self.num_landmarks)

# save trained model
def SaveModel(model, filename):
    with open(filename, 'wb') as f:
        pickle.dump(model, f)

# load model for test
def LoadModel(filename):
    with open(filename, 'rb') as f:
        model=pickle.load(f)
    if not isinstance(model, CascadeModel):
        raise TypeError('%s does not hold a CascadeModel' % filename)
    return model

########################### training phase ###########################
# what the progress hook gets after every tree (tree set) and every stage (tree None)
class TrainingReport:
    def __init__(self, stage, tree, train_error, validate_error, elapsed):
        self.stage=stage
        self.tree=tree
        self.train_error=train_error
        self.validate_error=validate_error
        self.elapsed=elapsed

    def __repr__(self):
        return ('TrainingReport(stage=%r, tree=%r, train_error=%.6g, validate_error=%.6g)'
                % (self.stage, self.tree, self.train_error, self.validate_error))


# context of one cascade level
class RegressorTraining:
    def __init__(self, training_data, mean_shape):
        self.training_data=training_data
        self.mean_shape=mean_shape
        self.num_landmarks=training_data.num_landmarks


# samples of one partition as arrays, estimates are written back after every update
class _SampleBlock:
    def __init__(self, samples, training_data):
        self.samples=samples
        self.idxs=np.array([s.idx for s in samples], dtype=np.intp)
        shape=(len(samples), training_data.num_landmarks, 2)
        self.estimates=np.array([s.estimate for s in samples], dtype=np.float64).reshape(shape)
        self.targets=np.array([training_data.shapes[i] for i in self.idxs], dtype=np.float64).reshape(shape)
        self.intensities=None
        self.residuals=self.targets-self.estimates

    def __len__(self):
        return len(self.samples)

    def Update(self, delta):
        self.estimates+=delta
        self.residuals=self.targets-self.estimates
        for i, s in enumerate(self.samples):
            s.estimate=self.estimates[i].copy()


class CascadeTrainer:
    # progress is called with a TrainingReport, a truthy return stops before the next tree
    def __init__(self, params=None, n_jobs=1, progress=None, verbose=False):
        self.params=params
        self.n_jobs=n_jobs
        self.progress=progress
        self.verbose=verbose
        self.stopped=False

    def _Report(self, stage, tree, train, validate, t0):
        report=TrainingReport(stage, tree, MeanSquaredResidual(train.residuals),
                              MeanSquaredResidual(validate.residuals), time.time()-t0)
        if self.progress is not None and self.progress(report):
            logger.info('training stopped by progress hook at stage %d tree %s', stage, tree)
            self.stopped=True
        return report

    def _Intensities(self, block, training_data, coords, mean_shape):
        block.intensities=ComputePixelIntensities(training_data.images, training_data.rects, block.idxs,
                                                  block.estimates, coords, mean_shape, self.n_jobs)

    def Train(self, training_data):
        params=self.params if self.params is not None else training_data.params
        params.Validate()
        training_data.Validate()
        if not training_data.normalized:
            raise ConfigurationError('training data has not been prepared')
        if len(training_data.train_samples)==0:
            raise ConfigurationError('no training samples')

        self.stopped=False
        model=CascadeModel(MeanShape(training_data.shapes))
        for k in range(params.num_cascades):
            try:
                stage=self.TrainStage(k, training_data, params)
            except DegenerateDataError as e:
                raise e.At(stage=k) from e
            model.stages.append(stage)
            if self.stopped:
                break
        return model

    def TrainStage(self, k, training_data, params):
        t0=time.time()
        train=_SampleBlock(training_data.train_samples, training_data)
        validate=_SampleBlock(training_data.validate_samples, training_data)
        regressor_training=RegressorTraining(training_data, MeanShape(train.estimates))
        mean_shape=regressor_training.mean_shape

        coords=SamplePixelCoordinates(mean_shape, params.num_random_pixel_coordinates, training_data.rnd)
        self._Intensities(train, training_data, coords, mean_shape)
        self._Intensities(validate, training_data, coords, mean_shape)
        if not np.all(np.isfinite(train.residuals)):
            raise DegenerateDataError('non finite residuals', stage=k)
        logger.info('stage %d: %d samples, error %.6g', k, len(train), MeanSquaredResidual(train.residuals))

        stage=StageRegressor(mean_shape, coords, learning_rate=params.learning_rate)
        trees=range(params.num_trees)
        if self.verbose:
            trees=tqdm.tqdm(trees, desc='stage %d' % k, leave=False)
        for t in trees:
            tree_training=TreeTraining(train.residuals, train.intensities, coords, mean_shape,
                                       regressor_training.num_landmarks)
            try:
                tree=TrainTree(tree_training, params, training_data.rnd)
            except DegenerateDataError as e:
                raise e.At(stage=k, tree=t) from e
            stage.trees.append(tree)
            train.Update(params.learning_rate*tree.predict(train.intensities))
            if len(validate):
                validate.Update(params.learning_rate*tree.predict(validate.intensities))
            report=self._Report(k, t, train, validate, t0)
            logger.debug('stage %d tree %d: %d nodes, error %.6g', k, t, tree.node_count, report.train_error)
            if self.stopped:
                break

        report=self._Report(k, None, train, validate, t0)
        logger.info('stage %d done in %.1fs: train error %.6g, validate error %.6g',
                    k, report.elapsed, report.train_error, report.validate_error)
        return stage
