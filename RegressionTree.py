import numpy as np

from Errors import DegenerateDataError
from PixelFeatures import PairProbabilities

TREE_LEAF=-1
# a split has to beat no split by this fraction of the node's residual energy
param_min_split_gain=1e-9

####################### regression tree ############################
# binary tree in the array layout of sklearn's tree_, samples go left when I[a]-I[b] > threshold
class RegressionTree:
    def __init__(self, children_left, children_right, feature_a, feature_b, threshold, value):
        self.children_left=np.asarray(children_left, dtype=np.intp)
        self.children_right=np.asarray(children_right, dtype=np.intp)
        self.feature_a=np.asarray(feature_a, dtype=np.intp)
        self.feature_b=np.asarray(feature_b, dtype=np.intp)
        self.threshold=np.asarray(threshold, dtype=np.float64)
        self.value=np.asarray(value, dtype=np.float64)

    @property
    def node_count(self):
        return len(self.children_left)

    def IsLeaf(self, node):
        return self.children_left[node]==TREE_LEAF

    # node ids of the leaves
    def GetLeaves(self):
        return np.where(self.children_left==TREE_LEAF)[0]

    def depth(self):
        depths=np.zeros(self.node_count, dtype=np.intp)
        for node in range(self.node_count):
            if not self.IsLeaf(node):
                depths[self.children_left[node]]=depths[node]+1
                depths[self.children_right[node]]=depths[node]+1
        return int(depths.max())

    # leaf node reached by every row of intensities
    def apply(self, intensities):
        intensities=np.atleast_2d(intensities).astype(np.float64)
        nodes=np.zeros(len(intensities), dtype=np.intp)
        rows=np.arange(len(intensities))
        active=self.children_left[nodes]!=TREE_LEAF
        while active.any():
            r=rows[active]
            n=nodes[active]
            diff=intensities[r, self.feature_a[n]]-intensities[r, self.feature_b[n]]
            nodes[active]=np.where(diff>self.threshold[n], self.children_left[n], self.children_right[n])
            active=self.children_left[nodes]!=TREE_LEAF
        return nodes

    # shape displacement per row, (n, landmarks, 2)
    def predict(self, intensities):
        return self.value[self.apply(intensities)]

    def __eq__(self, other):
        if not isinstance(other, RegressionTree):
            return NotImplemented
        return all(np.array_equal(getattr(self, k), getattr(other, k))
                   for k in ('children_left', 'children_right', 'feature_a', 'feature_b', 'threshold', 'value'))

    __hash__=None

    def __repr__(self):
        return 'RegressionTree(nodes=%d, leaves=%d)' % (self.node_count, len(self.GetLeaves()))


# everything a single tree is grown from
class TreeTraining:
    def __init__(self, residuals, intensities, pixel_coordinates, mean_shape, num_landmarks):
        self.residuals=np.asarray(residuals, dtype=np.float64)
        self.intensities=np.asarray(intensities, dtype=np.float32)
        self.pixel_coordinates=pixel_coordinates
        self.mean_shape=mean_shape
        self.num_landmarks=num_landmarks
        assert self.residuals.shape==(len(self.intensities), num_landmarks, 2)
        assert self.intensities.shape[1]==len(pixel_coordinates)
        self._pair_probabilities=None

    def PairProbabilities(self, lam):
        if self._pair_probabilities is None:
            self._pair_probabilities=PairProbabilities(self.pixel_coordinates, self.mean_shape, lam)
        return self._pair_probabilities


class _Split:
    __slots__=('a', 'b', 'threshold', 'left')

    def __init__(self, a, b, threshold, left):
        self.a=a
        self.b=b
        self.threshold=threshold
        self.left=left

# draw candidate splits for the node and keep the best one, None if nothing beats a leaf
def BestSplit(training, idx, targets, params, rnd):
    num_pixels=len(training.pixel_coordinates)
    prob=training.PairProbabilities(params.exponential_lambda)
    pairs=rnd.choice(len(prob), params.num_random_split_tests_per_node, p=prob)
    a=pairs//num_pixels
    b=pairs%num_pixels
    x=training.intensities[idx]
    diffs=x[:, a].astype(np.float64)-x[:, b]
    thresholds=rnd.uniform(diffs.min(0), diffs.max(0))

    # |S_L|^2/n_L + |S_R|^2/n_R is maximal where the children's SSE is minimal
    left=diffs>thresholds
    n_left=left.sum(0)
    n_right=len(idx)-n_left
    total=targets.sum(0)
    sum_left=left.T.astype(np.float64).dot(targets)
    sum_right=total-sum_left
    score=np.zeros(len(pairs))
    has_left=n_left>0
    has_right=n_right>0
    score[has_left]+=np.sum(sum_left[has_left]**2, 1)/n_left[has_left]
    score[has_right]+=np.sum(sum_right[has_right]**2, 1)/n_right[has_right]
    base=np.sum(total**2)/len(idx)

    best=int(np.argmax(score))
    energy=np.sum(targets**2)
    if not score[best]-base>param_min_split_gain*energy:
        return None
    return _Split(int(a[best]), int(b[best]), float(thresholds[best]), left[:, best])

def LeafValue(targets, num_landmarks):
    if len(targets)==0:
        raise DegenerateDataError('leaf reached by zero samples')
    value=targets.mean(0)
    if not np.all(np.isfinite(value)):
        raise DegenerateDataError('non finite leaf value')
    return value.reshape(num_landmarks, 2)

# grow one tree depth first, left child before right child
def TrainTree(training, params, rnd):
    n=len(training.residuals)
    if n==0:
        raise DegenerateDataError('tree training without samples')
    targets=training.residuals.reshape(n, -1)
    if not np.all(np.isfinite(targets)):
        raise DegenerateDataError('non finite residuals')
    if not np.all(np.isfinite(training.intensities)):
        raise DegenerateDataError('non finite pixel intensities')

    children_left=[TREE_LEAF]
    children_right=[TREE_LEAF]
    feature_a=[0]
    feature_b=[0]
    threshold=[0.0]
    value=[None]

    stack=[(0, np.arange(n), 0)]
    while len(stack)>0:
        node, idx, depth=stack.pop()
        split=None
        if depth<params.max_tree_depth and len(idx)>=2:
            split=BestSplit(training, idx, targets[idx], params, rnd)
        if split is None:
            value[node]=LeafValue(targets[idx], training.num_landmarks)
            continue
        feature_a[node]=split.a
        feature_b[node]=split.b
        threshold[node]=split.threshold
        ids=[]
        for _ in range(2):
            ids.append(len(children_left))
            children_left.append(TREE_LEAF)
            children_right.append(TREE_LEAF)
            feature_a.append(0)
            feature_b.append(0)
            threshold.append(0.0)
            value.append(None)
        children_left[node], children_right[node]=ids
        value[node]=np.zeros((training.num_landmarks, 2))
        stack.append((ids[1], idx[~split.left], depth+1))
        stack.append((ids[0], idx[split.left], depth+1))

    return RegressionTree(children_left, children_right, feature_a, feature_b, threshold, np.array(value))
