import logging
import time

import numpy as np

from Errors import ConfigurationError, DegenerateDataError
from ShapeSpace import *
from TrainingData import *
from PixelFeatures import PixelCoordinates, SamplePixelCoordinates, ComputePixelIntensities
from RegressionTree import RegressionTree, TreeTraining, TrainTree
from ShapeCascade import *
from FaceDataset import *

logger=logging.getLogger(__name__)

################### params ###################
param_augment_num=20
param_validate_percent=0.1
param_cascade_num=10
param_tree_num=500
param_tree_depth=5
param_pixel_num=400
param_split_test_num=20
param_lambda=10.0
param_learning_rate=0.1
param_n_jobs=8
param_seed=0

def DefaultParameters():
    return AlgorithmParameters(num_cascades=param_cascade_num, num_trees=param_tree_num,
                               max_tree_depth=param_tree_depth, num_random_pixel_coordinates=param_pixel_num,
                               num_random_split_tests_per_node=param_split_test_num,
                               exponential_lambda=param_lambda, learning_rate=param_learning_rate)

########################## error ###################################
# landmark error normalized by inter-pupil distance (68 landmarks) or by the ground truth bounds diagonal
def ComputeError(shapes, gts):
    err=0
    for i in range(len(shapes)):
        shape=shapes[i]
        gt=gts[i]
        if len(gt)==68:
            norm=np.sqrt(np.sum(np.square(np.mean(gt[42:48]-gt[36:42], 0))))
        else:
            bounds=ShapeBounds(gt)
            norm=np.sqrt(np.sum(np.square(bounds[3]-bounds[0])))
        err+=np.sum(np.sqrt(np.sum(np.square(shape-gt), 1)))/(len(gt)*norm)
    return err/len(shapes)

# print stage progress like the training scripts do
def PrintProgress(report):
    if report.tree is None:
        print('Stage', report.stage+1, 'Error:', report.train_error, 'Validation:', report.validate_error,
              'use:', round(report.elapsed, 2), 's')
    return False

# full run: normalize, initialize, train
def TrainCascade(images, shapes, rects=None, params=None, seed=param_seed,
                 strategy=InitializationStrategy.KAZEMI, numInitializationsPerImage=param_augment_num,
                 validate_percent=param_validate_percent, n_jobs=1, progress=None, verbose=False):
    t1=time.time()
    params=params if params is not None else DefaultParameters()
    data=TrainingData(images, shapes, rects, params, seed)
    data.Prepare(strategy, numInitializationsPerImage, validate_percent)
    model=CascadeTrainer(params, n_jobs, progress, verbose).Train(data)
    logger.info('training took %.1fs', time.time()-t1)
    return model
